"""
Configuration management for ShakBot.

Provides a clean public API for all configuration components.
"""

# Base infrastructure
from .base import Environment

# Main configuration class
from .main import Config

# Runtime configuration
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

# Public API
__all__ = [
    # Main class
    "Config",
    # Base
    "Environment",
    # Runtime
    "CompletionConfig",
    "EnrichmentConfig",
    "MonitoringConfig",
    "PersistenceConfig",
    "RetryPolicyConfig",
    "SpeechConfig",
    "VoiceConfig",
    "YAMLConfigLoader",
]
