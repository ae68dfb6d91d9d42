"""Configuration manager for DepGraph CLI using TOML files."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, Optional

import toml

from .config import (
    BASE_DIR,
    CONFIG_FILE,
    DEFAULT_EXCLUDED_DIRS,
    DEFAULT_EXTENSIONS,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_WORKERS,
)

logger = logging.getLogger(__name__)


@dataclass
class IndexerSettings:
    """Tunables for :class:`~depgraph_cli.indexer.FileIndexer`."""

    excluded_dirs: FrozenSet[str] = field(default_factory=lambda: DEFAULT_EXCLUDED_DIRS)
    extensions: FrozenSet[str] = field(default_factory=lambda: DEFAULT_EXTENSIONS)
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS
    self_edges_are_cycles: bool = False

    def __post_init__(self) -> None:
        self.excluded_dirs = frozenset(self.excluded_dirs)
        self.extensions = frozenset(
            ext if ext.startswith(".") else f".{ext}" for ext in self.extensions
        )
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_file_size < 0:
            raise ValueError("max_file_size must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["excluded_dirs"] = sorted(self.excluded_dirs)
        payload["extensions"] = sorted(self.extensions)
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IndexerSettings":
        defaults = cls()
        return cls(
            excluded_dirs=payload.get("excluded_dirs", defaults.excluded_dirs),
            extensions=payload.get("extensions", defaults.extensions),
            max_file_size=int(payload.get("max_file_size", defaults.max_file_size)),
            max_workers=int(payload.get("max_workers", defaults.max_workers)),
            self_edges_are_cycles=bool(
                payload.get("self_edges_are_cycles", defaults.self_edges_are_cycles)
            ),
        )


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config %s: %s", CONFIG_FILE, exc)
        return False


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> IndexerSettings:
    """Load indexer settings from the ``[indexer]`` section.

    Args:
        overrides: Values that win over the file (e.g. CLI options).
            ``None`` entries are ignored.

    Returns:
        Settings with defaults filled in for anything not configured.
    """
    section = dict(load_full_config().get("indexer", {}))
    for key, value in (overrides or {}).items():
        if value is not None:
            section[key] = value
    try:
        return IndexerSettings.from_dict(section)
    except (TypeError, ValueError) as exc:
        logger.warning("Invalid [indexer] settings (%s); using defaults", exc)
        return IndexerSettings()


def save_settings(settings: IndexerSettings) -> bool:
    """Save indexer settings, preserving other sections in the file."""
    config = load_full_config()
    config["indexer"] = settings.to_dict()
    return _save_full_config(config)


def clear_settings() -> bool:
    """Remove the ``[indexer]`` section, resetting to defaults."""
    config = load_full_config()
    config.pop("indexer", None)
    return _save_full_config(config)
