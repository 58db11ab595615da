"""
Persistence for ShakBot.

Provides the file-backed persistence service, JSON utilities and the
storage degradation strategy.
"""

from .degradation import (
    PersistenceDegradationStrategy,
    SaveOutcome,
    SaveStage,
    strip_large_attachments,
)
from .json_manager import JSONRepository
from .json_store import JSONPersistenceService, QuotaKeyValueStore

__all__ = [
    "JSONPersistenceService",
    "JSONRepository",
    "PersistenceDegradationStrategy",
    "QuotaKeyValueStore",
    "SaveOutcome",
    "SaveStage",
    "strip_large_attachments",
]
