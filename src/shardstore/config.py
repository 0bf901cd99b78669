"""
Storage configuration for shardstore.

Loaded from environment variables (optionally primed from a .env file)
or from a YAML file.

Environment:
    SHARDSTORE_PATH        storage root
    SHARDSTORE_LOG_LEVEL   logging level name (default INFO)

YAML:
    storage:
      path: /var/lib/files
      variants:
        - {name: tiny, length: 10}
      media_types:
        text/plain: [txt]
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import StorageConfigError

_FIELDS = frozenset(("path", "variants", "media_types", "log_level"))


@dataclass(frozen=True)
class StorageConfig:
    """Storage root, variants and media type overrides."""

    path: Optional[str] = None
    variants: List[Dict[str, Any]] = field(default_factory=list)
    media_types: Dict[str, List[str]] = field(default_factory=dict)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "StorageConfig":
        """Load configuration from environment variables."""
        load_dotenv(dotenv_path)
        return cls(
            path=os.getenv("SHARDSTORE_PATH") or None,
            log_level=os.getenv("SHARDSTORE_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        """Build configuration from a plain mapping."""
        variants = data.get("variants") or []
        media_types = data.get("media_types") or {}
        if not isinstance(variants, list):
            raise StorageConfigError("'variants' must be a list")
        if not isinstance(media_types, dict):
            raise StorageConfigError("'media_types' must be a mapping")

        path = data.get("path")
        return cls(
            path=str(path) if path else None,
            variants=list(variants),
            media_types={k: list(v) for k, v in media_types.items()},
            log_level=str(data.get("log_level", "INFO")),
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> "StorageConfig":
        """Load configuration from a YAML file."""
        with open(Path(config_path)) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise StorageConfigError(f"Config must be a mapping: {config_path}")
        # Unwrap a single top-level section (e.g. "storage:")
        if len(config) == 1:
            ((key, section),) = config.items()
            if key not in _FIELDS and isinstance(section, dict):
                config = section
        return cls.from_dict(config)

    def with_path(self, path: Optional[str]) -> "StorageConfig":
        """Copy with a different root; None keeps the current one."""
        if not path:
            return self
        return replace(self, path=str(path))
