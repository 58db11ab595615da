"""
Base configuration infrastructure for ShakBot.

Contains shared constants and the Environment enum.
"""

from enum import Enum

ENV_PREFIX = "SHAKBOT_"

# Default model constants
DEFAULT_FAST_MODEL = "gpt-4o-mini"
DEFAULT_SMART_MODEL = "gpt-4o"
DEFAULT_IMAGE_MODEL = "gpt-image-1"
DEFAULT_TTS_MODEL = "gpt-4o-mini-tts"
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"


class Environment(Enum):
    """Environment types for configuration."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
