"""
Layered ORM configuration.

Merge order (later overrides earlier):
    1. Defaults
    2. YAML files (``tessera.yaml`` when no path is given)
    3. Environment variables (``TESSERA_*``, nested by ``__``)
    4. Manual overrides

Example ``tessera.yaml``::

    debug: false
    default_rows_limit: 1000
    default_time_loc: Asia/Shanghai
    databases:
      default:
        driver: sqlite3
        dsn: app.db
        max_stmt_cache_size: 32

    TESSERA_DATABASES__DEFAULT__MAX_OPEN_CONNS=20

    config = OrmConfig.load()
    config.apply()
    await config.register_databases()
"""

from __future__ import annotations

import copy
import datetime
import json
import logging
import os
from glob import glob
from pathlib import Path
from typing import Any, Dict, List, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import settings
from .faults import ConfigInvalidFault
from .models.utils import set_name_strategy

logger = logging.getLogger("tessera.config")

__all__ = ["OrmConfig", "DEFAULTS"]

DEFAULTS: Dict[str, Any] = {
    "debug": False,
    "default_rows_limit": -1,
    "default_rels_depth": 2,
    "default_time_loc": "UTC",
    "name_strategy": "snake_string",
    "databases": {},
}

_DATABASE_OPTIONS = ("max_idle_conns", "max_open_conns", "conn_max_lifetime", "max_stmt_cache_size")


class OrmConfig:
    """Merged configuration data with typed accessors."""

    def __init__(self, env_prefix: str = "TESSERA_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    @classmethod
    def load(
        cls,
        paths: Optional[List[str]] = None,
        env_prefix: str = "TESSERA_",
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "OrmConfig":
        """
        Load configuration from YAML files, the environment and overrides.

        Args:
            paths: YAML file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            overrides: Manual overrides (highest precedence)
        """
        config = cls(env_prefix=env_prefix)

        if paths is None and Path("tessera.yaml").exists():
            paths = ["tessera.yaml"]
        for pattern in paths or ():
            for path_str in sorted(glob(pattern)):
                config._load_yaml_file(Path(path_str))

        config._load_from_env()

        if overrides:
            config._merge_dict(config.config_data, overrides)
        return config

    def _load_yaml_file(self, path: Path) -> None:
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)
        if data:
            self._merge_dict(self.config_data, data)
        logger.debug(f"loaded config file {path}")

    def _load_from_env(self) -> None:
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str) -> None:
        """TESSERA_DATABASES__DEFAULT__DSN to databases.default.dsn."""
        parts = key[len(self.env_prefix):].lower().split("__")
        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = self._parse_value(value)

    @staticmethod
    def _parse_value(value: str) -> Any:
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False
        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass
        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass
        return value

    def _merge_dict(self, target: dict, source: dict) -> None:
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get a value by dot-separated path."""
        current: Any = self.config_data
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current

    # ── Typed accessors ──────────────────────────────────────────────

    def _int(self, key: str) -> int:
        value = self.config_data.get(key)
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigInvalidFault(key, f"expected an integer, got `{value}`") from None

    @property
    def debug(self) -> bool:
        return bool(self.config_data.get("debug"))

    @property
    def default_rows_limit(self) -> int:
        return self._int("default_rows_limit")

    @property
    def default_rels_depth(self) -> int:
        return self._int("default_rels_depth")

    @property
    def default_time_loc(self) -> datetime.tzinfo:
        name = self.config_data.get("default_time_loc") or "UTC"
        if isinstance(name, datetime.tzinfo):
            return name
        if str(name).upper() == "UTC":
            return datetime.timezone.utc
        try:
            return ZoneInfo(str(name))
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigInvalidFault("default_time_loc", f"unknown time zone `{name}`") from None

    @property
    def name_strategy(self) -> str:
        return str(self.config_data.get("name_strategy") or "snake_string")

    @property
    def databases(self) -> Dict[str, Dict[str, Any]]:
        databases = self.config_data.get("databases") or {}
        if not isinstance(databases, dict):
            raise ConfigInvalidFault("databases", "expected a mapping of alias name to settings")
        return databases

    # ── Applying ─────────────────────────────────────────────────────

    def apply(self) -> None:
        """
        Push the settings into the ORM.

        Raises:
            ConfigInvalidFault: a value has the wrong type or is unknown
        """
        settings.DEBUG = self.debug
        settings.DEFAULT_ROWS_LIMIT = self.default_rows_limit
        settings.DEFAULT_RELS_DEPTH = self.default_rels_depth
        settings.DEFAULT_TIME_LOC = self.default_time_loc
        try:
            set_name_strategy(self.name_strategy)
        except ValueError as exc:
            raise ConfigInvalidFault("name_strategy", str(exc)) from None

    async def register_databases(self) -> List[str]:
        """
        Register every configured alias; returns their names.

        Raises:
            ConfigInvalidFault: an alias lacks ``driver`` or ``dsn``
        """
        from .db.alias import register_database

        names: List[str] = []
        for alias_name, options in self.databases.items():
            if not isinstance(options, dict) or not options.get("driver") or "dsn" not in options:
                raise ConfigInvalidFault(
                    f"databases.{alias_name}", "each database needs `driver` and `dsn`"
                )
            extra = {key: options[key] for key in _DATABASE_OPTIONS if key in options}
            await register_database(alias_name, options["driver"], str(options["dsn"]), **extra)
            names.append(alias_name)
        return names

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.config_data)
