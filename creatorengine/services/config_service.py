"""
Configuration Service

Loads engine configuration from JSON or YAML files and turns it into a
validated EngineConfig.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from creatorengine.config.settings import EngineConfig
from creatorengine.core.exceptions import ConfigError

logger = logging.getLogger("CreatorEngine.ConfigService")

_SET_KEYS = ("forbidden_symbols", "allowed_modules", "allowed_action_types")
_INT_KEYS = (
    "code_timeout_seconds",
    "snapshot_retention_days",
    "snapshot_max_size_mb",
    "snapshot_purge_grace_days",
    "lock_timeout_seconds",
)


class ConfigService:
    """
    Service class for configuration management.

    Provides:
    - Configuration loading (JSON or YAML, picked by file suffix)
    - Validation into an EngineConfig
    - Dot-notation access to the raw document (e.g. "wordpress.site_url")
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize config service.

        Args:
            config_path: Path to config file
        """
        if config_path is None:
            config_path = Path.home() / ".creatorengine" / "config.yaml"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}

    @property
    def _is_yaml(self) -> bool:
        return self.config_path.suffix.lower() in (".yml", ".yaml")

    def load_raw(self) -> Dict[str, Any]:
        """
        Read the configuration document.

        Returns:
            The parsed document

        Raises:
            ConfigError: If the file is missing or cannot be parsed
        """
        if not self.config_path.exists():
            logger.error(f"Config file not found at: {self.config_path}")
            raise ConfigError(f"Config file not found at: {self.config_path}")

        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                if self._is_yaml:
                    data = yaml.safe_load(f) or {}
                else:
                    data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"Error parsing {self.config_path.name}: {e}")
            raise ConfigError(f"Error parsing {self.config_path.name}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")

        self._config = data
        logger.info(f"Configuration loaded from {self.config_path}")
        return self._config.copy()

    def load(self) -> EngineConfig:
        """
        Load and validate the engine section of the configuration.

        Returns:
            EngineConfig built from the file, defaults filling the gaps
        """
        raw = self.load_raw()
        section = raw.get("engine", raw)
        if not isinstance(section, dict):
            raise ConfigError("'engine' section must be a mapping")
        return self.build(section)

    @staticmethod
    def build(section: Dict[str, Any]) -> EngineConfig:
        """
        Validate a mapping of recognized options into an EngineConfig.

        Raises:
            ConfigError: If a recognized option holds a value of the wrong type
        """
        kwargs: Dict[str, Any] = {}
        known = set(_SET_KEYS) | set(_INT_KEYS) | {"storage_dir"}

        for key, value in section.items():
            if key not in known:
                if key not in ("wordpress", "logging"):
                    logger.warning(f"Ignoring unknown config key: {key}")
                continue

            if key in _SET_KEYS:
                if not isinstance(value, (list, tuple, set)) or not all(isinstance(v, str) for v in value):
                    raise ConfigError(f"'{key}' must be a list of strings")
                kwargs[key] = frozenset(value)
            elif key in _INT_KEYS:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise ConfigError(f"'{key}' must be a non-negative integer")
                kwargs[key] = value
            else:
                kwargs[key] = Path(str(value)).expanduser() if value is not None else None

        if kwargs.get("code_timeout_seconds") == 0:
            raise ConfigError("'code_timeout_seconds' must be at least 1")

        return EngineConfig(**kwargs)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a value in the loaded document by dotted path.

        ``get("wordpress.site_url")`` walks nested mappings; a missing
        segment or a null value yields ``default``.
        """
        value: Any = self._config
        for part in key.split("."):
            if not isinstance(value, dict) or value.get(part) is None:
                return default
            value = value[part]
        return value
