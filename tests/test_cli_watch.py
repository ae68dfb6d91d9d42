"""Tests for the watch-mode event handler."""

from pathlib import Path

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from depgraph_cli.cli_watch import CHANGED, DELETED, CodeChangeHandler


@pytest.fixture
def batches():
    return []


@pytest.fixture
def handler(temp_dir: Path, batches) -> CodeChangeHandler:
    return CodeChangeHandler(
        temp_dir,
        batches.append,
        extensions=frozenset({".ts", ".py"}),
        excluded_dirs=frozenset({"node_modules"}),
        debounce_seconds=2.0,
    )


def test_changes_are_flushed_after_quiet_period(handler: CodeChangeHandler, batches, temp_dir: Path):
    """Events flush as one sorted batch after the debounce period."""
    handler.dispatch(FileModifiedEvent(str(temp_dir / "b.ts")))
    handler.dispatch(FileCreatedEvent(str(temp_dir / "a.py")))

    assert handler.flush_if_due(now=handler._last_event + 0.5) == 0
    assert handler.flush_if_due(now=handler._last_event + 2.0) == 2
    assert batches == [[(CHANGED, temp_dir / "a.py"), (CHANGED, temp_dir / "b.ts")]]

    # nothing left to flush
    assert handler.flush_if_due(now=float("inf")) == 0


def test_last_event_for_a_path_wins(handler: CodeChangeHandler, batches, temp_dir: Path):
    """Only the last event for a path is kept."""
    handler.dispatch(FileCreatedEvent(str(temp_dir / "a.ts")))
    handler.dispatch(FileDeletedEvent(str(temp_dir / "a.ts")))
    handler.flush_if_due(now=float("inf"))

    assert batches == [[(DELETED, temp_dir / "a.ts")]]


def test_move_is_delete_plus_change(handler: CodeChangeHandler, batches, temp_dir: Path):
    """A move becomes a delete of the old path and a change of the new one."""
    handler.dispatch(FileMovedEvent(str(temp_dir / "old.ts"), str(temp_dir / "new.ts")))
    handler.flush_if_due(now=float("inf"))

    assert batches == [[(CHANGED, temp_dir / "new.ts"), (DELETED, temp_dir / "old.ts")]]


@pytest.mark.parametrize("rel", [
    "notes.txt",
    ".git/config.ts",
    "node_modules/pkg/index.ts",
    ".hidden.ts",
])
def test_ignored_paths(handler: CodeChangeHandler, batches, temp_dir: Path, rel):
    """Hidden, excluded and unindexed paths are ignored."""
    handler.dispatch(FileModifiedEvent(str(temp_dir / rel)))
    assert handler.flush_if_due(now=float("inf")) == 0
    assert batches == []


def test_outside_root_and_directories_ignored(handler: CodeChangeHandler, batches, temp_dir: Path):
    """Paths outside the root and directory events are ignored."""
    handler.dispatch(FileModifiedEvent(str(temp_dir.parent / "elsewhere.ts")))
    handler.dispatch(DirModifiedEvent(str(temp_dir / "src")))
    assert handler.flush_if_due(now=float("inf")) == 0
