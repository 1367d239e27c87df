"""
QueryKit configuration.

``BuilderConfig`` holds the validation ceilings, cache size, query timeout
and PostgreSQL schema settings shared by a builder family. It can be built
from keyword arguments, from a mapping (snake_case or camelCase keys), or
from ``QUERYKIT_*`` environment variables and an optional ``.env`` file.

Usage:
    from querykit.config import BuilderConfig

    config = BuilderConfig(max_joins=5, query_timeout=10_000)
    config = BuilderConfig.from_dict({"maxQueryCache": 100})
    config = BuilderConfig.from_env(env_file=".env")
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values

from .faults import ConfigInvalidFault

__all__ = ["BuilderConfig"]

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_SEARCH_PATH_RE = re.compile(r"--search_path\s*=\s*([^\s,]+)")

_CEILINGS = (
    "max_query_cache",
    "max_where_conditions",
    "max_joins",
    "max_select_fields",
    "max_group_by_fields",
    "max_order_by_fields",
)


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


@dataclass
class BuilderConfig:
    """Builder configuration."""
    max_query_cache: int = 50
    max_where_conditions: int = 50
    max_joins: int = 20
    max_select_fields: int = 100
    max_group_by_fields: int = 20
    max_order_by_fields: int = 10
    validation: bool = True
    query_timeout: Optional[int] = 30000  # milliseconds; 0 or None disables
    schema: Optional[str] = None  # PostgreSQL only
    options: Optional[str] = None  # e.g. "-c --search_path=app"

    def __post_init__(self):
        for name in _CEILINGS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigInvalidFault(name, f"expected an integer, got {value!r}")
            if value < 0:
                raise ConfigInvalidFault(name, "must not be negative")

        if not isinstance(self.validation, bool):
            raise ConfigInvalidFault("validation", f"expected a boolean, got {self.validation!r}")

        if self.query_timeout is not None:
            if isinstance(self.query_timeout, bool) or not isinstance(self.query_timeout, (int, float)):
                raise ConfigInvalidFault("query_timeout", f"expected milliseconds, got {self.query_timeout!r}")
            if self.query_timeout < 0:
                raise ConfigInvalidFault("query_timeout", "must not be negative")

        if self.schema is not None and not str(self.schema).strip():
            raise ConfigInvalidFault("schema", "must not be empty")

    @property
    def search_path(self) -> str:
        """
        Effective PostgreSQL schema.

        An explicit ``schema`` wins, then ``--search_path=`` inside
        ``options``, then ``public``.
        """
        if self.schema:
            return self.schema
        if self.options:
            match = _SEARCH_PATH_RE.search(self.options)
            if match:
                return match.group(1).strip("'\"")
        return "public"

    @property
    def timeout_seconds(self) -> Optional[float]:
        if not self.query_timeout:
            return None
        return self.query_timeout / 1000

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "BuilderConfig":
        """Build from a mapping; accepts ``max_joins`` and ``maxJoins`` alike."""
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _snake(key)
            if name not in known:
                raise ConfigInvalidFault(key, "unknown configuration key")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        prefix: str = "QUERYKIT_",
        env_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BuilderConfig":
        """
        Build from environment variables.

        Values in ``env_file`` are read first; the process environment
        overrides them. ``QUERYKIT_MAX_JOINS=5`` maps to ``max_joins``.
        """
        raw: Dict[str, Any] = {}
        if env_file:
            raw.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        raw.update(os.environ if environ is None else environ)

        types = {f.name: f.type for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in raw.items():
            if not key.startswith(prefix):
                continue
            name = key[len(prefix):].lower()
            if name not in types:
                continue
            kwargs[name] = _parse_value(name, value)
        return cls(**kwargs)

    @classmethod
    def coerce(cls, config: Any) -> "BuilderConfig":
        if config is None:
            return cls()
        if isinstance(config, cls):
            return config
        if isinstance(config, Mapping):
            return cls.from_dict(config)
        raise ConfigInvalidFault("config", f"expected BuilderConfig or mapping, got {type(config).__name__}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "max_query_cache": self.max_query_cache,
            "max_where_conditions": self.max_where_conditions,
            "max_joins": self.max_joins,
            "max_select_fields": self.max_select_fields,
            "max_group_by_fields": self.max_group_by_fields,
            "max_order_by_fields": self.max_order_by_fields,
            "validation": self.validation,
            "query_timeout": self.query_timeout,
            "schema": self.search_path,
            "options": self.options,
        }


def _parse_value(name: str, value: str) -> Any:
    """Parse an environment string for the given config field."""
    value = value.strip()
    if name == "validation":
        if value.lower() in ("true", "yes", "1", "on"):
            return True
        if value.lower() in ("false", "no", "0", "off"):
            return False
        raise ConfigInvalidFault(name, f"expected a boolean, got {value!r}")

    if name in _CEILINGS or name == "query_timeout":
        if name == "query_timeout" and value.lower() in ("", "none", "off"):
            return None
        try:
            return int(value)
        except ValueError:
            raise ConfigInvalidFault(name, f"expected an integer, got {value!r}") from None

    return value or None
