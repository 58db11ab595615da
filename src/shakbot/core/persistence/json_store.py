"""
File-backed persistence service.

Each user gets a directory under the configured data directory holding a
small key-value store with a byte quota, much like browser local storage.
Writes that would push the directory past its quota are rejected with
``StorageCapacityExceededError`` and leave the previous contents untouched.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...conversation.models import ChatSession
from ..config import PersistenceConfig
from ..exceptions import StorageCapacityExceededError, ValidationError
from .json_manager import JSONRepository

logger = logging.getLogger(__name__)

SESSIONS_KEY = "sessions"
MEMORY_KEY = "memory"


class QuotaKeyValueStore:
    """JSON values stored one file per key, under a shared byte quota."""

    def __init__(self, directory: Path, capacity_bytes: int):
        self.directory = Path(directory)
        self.capacity_bytes = capacity_bytes

    def _path(self, key: str) -> Path:
        if not key or "/" in key or key.startswith("."):
            raise ValidationError("key", key, "must be a plain file name")
        return self.directory / f"{key}.json"

    def used_bytes(self) -> int:
        if not self.directory.exists():
            return 0
        return sum(p.stat().st_size for p in self.directory.glob("*.json"))

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return JSONRepository.load_json(self._path(key), default)

    def set(self, key: str, value: Any) -> int:
        """Store a value; returns the number of bytes written."""
        path = self._path(key)
        text = JSONRepository.encode(value)
        size = len(text.encode("utf-8"))

        existing = path.stat().st_size if path.exists() else 0
        attempted = self.used_bytes() - existing + size
        if attempted > self.capacity_bytes:
            raise StorageCapacityExceededError(
                attempted_bytes=attempted,
                capacity_bytes=self.capacity_bytes,
                component="QuotaKeyValueStore",
            )

        JSONRepository.write_text_atomic(path, text)
        return size

    def remove(self, key: str) -> bool:
        return JSONRepository.remove(self._path(key))


class JSONPersistenceService:
    """Persistence service over per-user quota stores."""

    def __init__(self, config: Optional[PersistenceConfig] = None):
        self.config = config or PersistenceConfig()
        self._stores: Dict[str, QuotaKeyValueStore] = {}

    def store_for(self, user_id: str) -> QuotaKeyValueStore:
        if user_id not in self._stores:
            if not user_id or "/" in user_id or user_id.startswith("."):
                raise ValidationError("user_id", user_id, "must be a plain name")
            self._stores[user_id] = QuotaKeyValueStore(
                self.config.data_dir / user_id, self.config.capacity_bytes
            )
        return self._stores[user_id]

    # ---------------------- sessions ----------------------

    def _load_records(self, user_id: str) -> List[Dict[str, Any]]:
        records = self.store_for(user_id).get(SESSIONS_KEY, [])
        if not isinstance(records, list):
            logger.warning(f"Ignoring malformed session data for user {user_id}")
            return []
        return [r for r in records if isinstance(r, dict)]

    def _write_records(self, user_id: str, records: List[Dict[str, Any]]) -> None:
        size = self.store_for(user_id).set(SESSIONS_KEY, records)
        logger.debug(f"Saved {len(records)} sessions for {user_id} ({size} bytes)")

    async def fetch_sessions(self, user_id: str) -> List[ChatSession]:
        sessions = []
        for record in self._load_records(user_id):
            try:
                sessions.append(ChatSession.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable session record: {e}")
        return sessions

    async def save_sessions(self, user_id: str, sessions: List[ChatSession]) -> None:
        self._write_records(user_id, [s.to_dict() for s in sessions])

    async def delete_session(self, user_id: str, session_id: str) -> None:
        records = self._load_records(user_id)
        kept = [r for r in records if r.get("id") != session_id]
        if len(kept) != len(records):
            self._write_records(user_id, kept)

    # ---------------------- memory ----------------------

    async def fetch_memory(self, user_id: str) -> str:
        data = self.store_for(user_id).get(MEMORY_KEY, {})
        if isinstance(data, dict):
            return str(data.get("memory", ""))
        return ""

    async def save_memory(self, user_id: str, memory: str) -> None:
        self.store_for(user_id).set(MEMORY_KEY, {"memory": memory})
