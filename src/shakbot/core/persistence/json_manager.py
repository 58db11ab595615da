"""
Centralized JSON file utilities.

Consistent decoding, error handling and atomic writes for the file-backed
storage backends.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)


class JSONRepository:
    """JSON files with consistent error handling and atomic writes."""

    @staticmethod
    def encode(data: Any) -> str:
        """Serialize to the compact form that is written and size-checked."""
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))

    @staticmethod
    def load_json(path: Path, default: Optional[Any] = None) -> Any:
        """
        Load JSON data from file.

        Args:
            path: Path to JSON file
            default: Value returned when the file is missing or unreadable

        Returns:
            Decoded JSON value or default
        """
        if not path.exists():
            logger.debug(f"JSON file does not exist: {path}")
            return default

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON file {path}: {e}")
            return default
        except OSError as e:
            logger.error(f"Failed to read JSON file {path}: {e}")
            return default

        if data is None:
            logger.warning(f"JSON file is empty: {path}")
            return default
        return data

    @staticmethod
    def write_text_atomic(path: Path, text: str) -> None:
        """
        Write text through a temporary file and rename it into place.

        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_suffix(path.suffix + ".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(temp_file, path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to write {path}: {e}", component="JSONRepository"
            ) from e
        logger.debug(f"Saved {path}")

    @staticmethod
    def remove(path: Path) -> bool:
        """Delete a file; False if it did not exist."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PersistenceError(
                f"Failed to remove {path}: {e}", component="JSONRepository"
            ) from e
        return True
