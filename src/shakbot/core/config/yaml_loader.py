"""
YAML reading and writing for ShakBot configuration files.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_HEADER = "# ShakBot configuration\n"


class YAMLConfigLoader:
    """Reads and writes the sectioned configuration mapping."""

    @staticmethod
    def load_yaml(path: Path) -> Dict[str, Any]:
        """
        Load a configuration file into a plain mapping.

        An empty file yields an empty mapping.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file is not valid YAML or its
                top level is not a mapping
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {path}: {e}",
                component="config",
                error_code="CONFIG_PARSE",
            ) from e

        if data is None:
            logger.warning(f"Configuration file is empty: {path}")
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration in {path} must be a mapping, got {type(data).__name__}",
                component="config",
                error_code="CONFIG_SHAPE",
            )

        logger.debug(f"Loaded configuration from {path}")
        return data

    @staticmethod
    def section(data: Dict[str, Any], name: str, known_fields: Iterable[str]) -> Dict[str, Any]:
        """Return one section of ``data``, rejecting keys the section lacks."""
        raw = data.get(name) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Section '{name}' must be a mapping",
                component="config",
                error_code="CONFIG_SHAPE",
            )
        unknown = sorted(set(raw) - set(known_fields))
        if unknown:
            raise ConfigurationError(
                f"Unknown keys in section '{name}': {', '.join(unknown)}",
                component="config",
                error_code="CONFIG_UNKNOWN_KEY",
                details={"section": name, "keys": unknown},
            )
        return dict(raw)

    @staticmethod
    def save_yaml(data: Dict[str, Any], path: Path) -> None:
        """Write ``data`` with a header line, keeping section order."""
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(CONFIG_HEADER)
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

        logger.debug(f"Saved configuration to {path}")
