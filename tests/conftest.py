"""Pytest configuration and fixtures for DepGraph CLI tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from depgraph_cli.config_manager import IndexerSettings
from depgraph_cli.indexer import FileIndexer
from depgraph_cli.storage import ProjectManager


@pytest.fixture(autouse=True)
def _isolated_config(temp_dir: Path, monkeypatch):
    """Keep every test away from the user's real ``config.toml``."""
    monkeypatch.setattr("depgraph_cli.config_manager.BASE_DIR", temp_dir)
    monkeypatch.setattr("depgraph_cli.config_manager.CONFIG_FILE", temp_dir / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def project_copy(temp_dir: Path, sample_project_path: Path) -> Path:
    """A writable copy of the sample project."""
    dest = temp_dir / "project"
    shutil.copytree(sample_project_path, dest)
    return dest


@pytest.fixture
def temp_project_manager(temp_dir: Path, monkeypatch) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    memory_dir = temp_dir / "memory"
    state_file = temp_dir / "state.json"

    # Patch both config AND storage modules (storage imports at module load)
    monkeypatch.setattr("depgraph_cli.config.BASE_DIR", temp_dir)
    monkeypatch.setattr("depgraph_cli.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("depgraph_cli.config.STATE_FILE", state_file)
    monkeypatch.setattr("depgraph_cli.storage.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("depgraph_cli.storage.STATE_FILE", state_file)

    return ProjectManager()


@pytest.fixture
def indexer() -> Generator[FileIndexer, None, None]:
    """An uninitialized indexer with a small worker pool."""
    with FileIndexer(settings=IndexerSettings(max_workers=2)) as idx:
        yield idx


@pytest.fixture
def indexed_indexer(indexer: FileIndexer, project_copy: Path) -> FileIndexer:
    """Indexer that has already walked a writable copy of the sample project."""
    indexer.index_project(project_copy)
    return indexer
