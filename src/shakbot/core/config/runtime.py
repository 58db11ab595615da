"""
Runtime configuration for ShakBot.

Contains the per-component configuration sections.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .base import (
    DEFAULT_FAST_MODEL,
    DEFAULT_IMAGE_MODEL,
    DEFAULT_SMART_MODEL,
    DEFAULT_TRANSCRIPTION_MODEL,
    DEFAULT_TTS_MODEL,
)


@dataclass
class MonitoringConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    json_logs: bool = False


@dataclass
class CompletionConfig:
    """Completion service configuration."""

    api_key: Optional[str] = None  # None = read OPENAI_API_KEY
    base_url: Optional[str] = None
    model_variants: Dict[str, str] = field(
        default_factory=lambda: {
            "fast": DEFAULT_FAST_MODEL,
            "smart": DEFAULT_SMART_MODEL,
        }
    )
    default_variant: str = "fast"
    utility_model: str = DEFAULT_FAST_MODEL  # titles and memory refinement
    image_model: str = DEFAULT_IMAGE_MODEL
    temperature: float = 0.7

    def resolve_model(self, variant: str) -> str:
        """Map a variant name to a model id, falling back to the default."""
        return self.model_variants.get(
            variant, self.model_variants.get(self.default_variant, DEFAULT_FAST_MODEL)
        )


@dataclass
class RetryPolicyConfig:
    """Backoff policy for rate-limited outbound calls."""

    max_attempts: int = 3
    base_delay_s: float = 1.0


@dataclass
class VoiceConfig:
    """Voice capture configuration."""

    bootstrap_silence_s: float = 5.0
    silence_s: float = 2.5
    language: str = "en"
    sample_rate: int = 16000
    speech_threshold: float = 0.02  # RMS level that counts as speech
    end_of_utterance_s: float = 0.8
    max_utterance_s: float = 15.0
    transcription_model: str = DEFAULT_TRANSCRIPTION_MODEL


@dataclass
class SpeechConfig:
    """Text-to-speech configuration."""

    model: str = DEFAULT_TTS_MODEL
    voice: str = "onyx"
    sample_rate: int = 24000


@dataclass
class PersistenceConfig:
    """Local storage configuration."""

    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    capacity_bytes: int = 5 * 1024 * 1024
    attachment_threshold_chars: int = 500
    keep_recent_sessions: int = 5


@dataclass
class EnrichmentConfig:
    """Background enrichment configuration."""

    memory_refinement_enabled: bool = True
    title_synthesis_enabled: bool = True
    # Reject refinements launched before the last applied one
    monotonic_memory_updates: bool = True
