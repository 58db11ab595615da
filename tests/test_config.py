"""
Tests for configuration management.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from shakbot.core.config import (
    CompletionConfig,
    Config,
    Environment,
    RetryPolicyConfig,
    YAMLConfigLoader,
)
from shakbot.core.exceptions import ConfigurationError


class TestConfig:
    """Test configuration management."""

    def test_config_default_initialization(self) -> None:
        config = Config()
        assert config.environment == Environment.DEVELOPMENT
        assert config.debug is False

    def test_default_policies(self) -> None:
        config = Config()
        assert config.retry.max_attempts == 3
        assert config.retry.base_delay_s == 1.0
        assert config.voice.bootstrap_silence_s == 5.0
        assert config.voice.silence_s == 2.5
        assert config.speech.sample_rate == 24000
        assert config.persistence.attachment_threshold_chars == 500
        assert config.persistence.keep_recent_sessions == 5

    def test_production_enables_json_logs(self) -> None:
        config = Config(environment=Environment.PRODUCTION, debug=True)
        assert config.debug is False
        assert config.monitoring.json_logs is True

    def test_testing_enables_debug(self) -> None:
        config = Config(environment=Environment.TESTING)
        assert config.debug is True
        assert config.monitoring.log_level == "DEBUG"

    def test_resolve_model_variant(self) -> None:
        completion = CompletionConfig()
        assert completion.resolve_model("smart") == completion.model_variants["smart"]
        assert completion.resolve_model("unknown") == completion.model_variants["fast"]

    def test_from_env(self) -> None:
        env = {
            "SHAKBOT_ENV": "production",
            "SHAKBOT_VOICE__SILENCE_S": "3.5",
            "SHAKBOT_RETRY__MAX_ATTEMPTS": "5",
            "SHAKBOT_ENRICHMENT__TITLE_SYNTHESIS_ENABLED": "false",
            "SHAKBOT_PERSISTENCE__DATA_DIR": "/tmp/shakbot-data",
            "SHAKBOT_COMPLETION__MODEL_VARIANTS": "fast=a-model,smart=b-model",
        }
        with patch.dict(os.environ, env, clear=False):
            config = Config.from_env()

        assert config.environment == Environment.PRODUCTION
        assert config.voice.silence_s == 3.5
        assert config.retry.max_attempts == 5
        assert config.enrichment.title_synthesis_enabled is False
        assert config.persistence.data_dir == Path("/tmp/shakbot-data")
        assert config.completion.model_variants == {"fast": "a-model", "smart": "b-model"}

    def test_from_env_ignores_invalid_values(self) -> None:
        with patch.dict(os.environ, {"SHAKBOT_RETRY__MAX_ATTEMPTS": "many"}, clear=False):
            config = Config.from_env()
        assert config.retry.max_attempts == RetryPolicyConfig().max_attempts

    def test_save_and_load_roundtrip(self, tmp_path: Path) -> None:
        config = Config()
        config.voice.language = "fr"
        config.persistence.data_dir = tmp_path / "store"
        path = tmp_path / "config.yaml"

        config.save(path)
        loaded = Config.from_file(path)

        assert loaded.voice.language == "fr"
        assert loaded.persistence.data_dir == tmp_path / "store"
        assert loaded.completion.model_variants == config.completion.model_variants

    def test_to_dict_serializes_paths(self) -> None:
        data = Config().to_dict()
        assert isinstance(data["persistence"]["data_dir"], str)
        assert data["environment"] == "development"


class TestYAMLConfigLoader:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            YAMLConfigLoader.load_yaml(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("# nothing here\n", encoding="utf-8")
        assert YAMLConfigLoader.load_yaml(path) == {}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("voice: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            YAMLConfigLoader.load_yaml(path)
        assert exc_info.value.error_code == "CONFIG_PARSE"

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- voice\n- speech\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            YAMLConfigLoader.load_yaml(path)

    def test_unknown_section_key(self, tmp_path: Path) -> None:
        path = tmp_path / "typo.yaml"
        path.write_text(yaml.safe_dump({"voice": {"silence": 3.0}}), encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_file(path)
        assert exc_info.value.details["keys"] == ["silence"]

    def test_unknown_environment(self, tmp_path: Path) -> None:
        path = tmp_path / "env.yaml"
        path.write_text("environment: staging\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Config.from_file(path)

    def test_saved_file_has_header(self, tmp_path: Path) -> None:
        path = tmp_path / "out.yaml"
        YAMLConfigLoader.save_yaml({"debug": True}, path)
        text = path.read_text(encoding="utf-8")
        assert text.startswith("# ShakBot configuration")
        assert YAMLConfigLoader.load_yaml(path) == {"debug": True}
