"""Configuration paths and indexing defaults for local DepGraph memory."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("DEPGRAPH_HOME", str(Path.home() / ".depgraph"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"
CONFIG_FILE = BASE_DIR / "config.toml"

SNAPSHOT_VERSION = "1.0.0"

# Directory names never descended into during a whole-project walk.
# Hidden directories (leading ".") are skipped regardless of this set.
DEFAULT_EXCLUDED_DIRS = frozenset({
    "node_modules", "bower_components", "vendor",
    ".venv", "venv", "__pycache__", "site-packages", ".tox", ".eggs",
    ".pytest_cache", ".mypy_cache", ".ruff_cache", "htmlcov", "coverage",
    "dist", "build", "out", "target", ".next", ".nuxt", ".cache",
    ".git", ".idea", ".vscode", ".depgraph",
})

DEFAULT_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs",
    ".vue", ".svelte",
    ".json", ".yaml", ".yml",
    ".md", ".mdx",
    ".css", ".scss", ".less", ".sass",
    ".html", ".htm",
    ".py", ".pyi", ".rb", ".go", ".rs", ".java", ".kt", ".swift",
})

DEFAULT_MAX_FILE_SIZE = 1024 * 1024  # 1 MiB
DEFAULT_MAX_WORKERS = 8


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
