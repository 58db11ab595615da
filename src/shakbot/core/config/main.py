"""
Main configuration class for ShakBot.

Contains the Config class that composes all configuration sections and
knows how to load them from YAML files or SHAKBOT_* environment variables.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Union

from ..exceptions import ConfigurationError
from .base import ENV_PREFIX, Environment
from .runtime import (
    CompletionConfig,
    EnrichmentConfig,
    MonitoringConfig,
    PersistenceConfig,
    RetryPolicyConfig,
    SpeechConfig,
    VoiceConfig,
)
from .yaml_loader import YAMLConfigLoader

logger = logging.getLogger(__name__)

_SECTIONS = {
    "completion": CompletionConfig,
    "retry": RetryPolicyConfig,
    "voice": VoiceConfig,
    "speech": SpeechConfig,
    "persistence": PersistenceConfig,
    "enrichment": EnrichmentConfig,
    "monitoring": MonitoringConfig,
}


def _coerce(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return value.lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path):
        return Path(value)
    if isinstance(current, dict):
        # fast=gpt-4o-mini,smart=gpt-4o
        pairs = [item.split("=", 1) for item in value.split(",") if "=" in item]
        return {k.strip(): v.strip() for k, v in pairs}
    return value


@dataclass
class Config:
    """Main configuration class for ShakBot."""

    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    completion: CompletionConfig = field(default_factory=CompletionConfig)
    retry: RetryPolicyConfig = field(default_factory=RetryPolicyConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self) -> None:
        """Apply environment-specific defaults."""
        if self.environment == Environment.PRODUCTION:
            self.debug = False
            self.monitoring.json_logs = True
        elif self.environment == Environment.TESTING:
            self.debug = True
            self.monitoring.log_level = "DEBUG"

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(config_path)
        data = YAMLConfigLoader.load_yaml(config_path)

        sections = {}
        for name, section_cls in _SECTIONS.items():
            known = [f.name for f in fields(section_cls)]
            section_data = YAMLConfigLoader.section(data, name, known)
            if name == "persistence" and "data_dir" in section_data:
                section_data["data_dir"] = Path(section_data["data_dir"])
            sections[name] = section_cls(**section_data)

        try:
            environment = Environment(data.get("environment", "development"))
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown environment in {config_path}: {data.get('environment')!r}",
                component="config",
                error_code="CONFIG_ENVIRONMENT",
            ) from e

        return cls(
            environment=environment,
            debug=bool(data.get("debug", False)),
            **sections,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from SHAKBOT_* environment variables.

        Section fields use a double underscore, e.g.
        ``SHAKBOT_VOICE__SILENCE_S=3.0`` or ``SHAKBOT_PERSISTENCE__DATA_DIR``.
        """
        env = Environment(os.getenv(f"{ENV_PREFIX}ENV", "development"))
        debug = os.getenv(f"{ENV_PREFIX}DEBUG")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            section = section_cls()
            for f in fields(section):
                raw = os.getenv(f"{ENV_PREFIX}{name.upper()}__{f.name.upper()}")
                if raw is None:
                    continue
                current = getattr(section, f.name)
                try:
                    setattr(section, f.name, _coerce(raw, current))
                except ValueError:
                    logger.warning(
                        f"Ignoring invalid value for {name}.{f.name}: {raw!r}"
                    )
            sections[name] = section

        config = cls(environment=env, **sections)
        if debug is not None:
            config.debug = debug.lower() in {"1", "true", "yes", "on"}
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data: Dict[str, Any] = {
            "environment": self.environment.value,
            "debug": self.debug,
        }
        for name in _SECTIONS:
            section = asdict(getattr(self, name))
            for key, value in section.items():
                if isinstance(value, Path):
                    section[key] = str(value)
            data[name] = section
        return data

    def save(self, config_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        YAMLConfigLoader.save_yaml(self.to_dict(), Path(config_path))
