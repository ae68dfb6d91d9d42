"""Watch mode for incremental re-indexing on file changes."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

import typer
from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler

logger = logging.getLogger(__name__)

console = Console()

watch_app = typer.Typer(help="Watch mode for incremental re-indexing")

CHANGED = "changed"
DELETED = "deleted"


class CodeChangeHandler(FileSystemEventHandler):
    """Collect file system events and flush them in debounced batches.

    Later events for the same path win, so a create followed by a delete
    inside one debounce window ends as a single deletion.
    """

    def __init__(
        self,
        root: Path,
        flush_callback: Callable[[List[Tuple[str, Path]]], None],
        extensions: FrozenSet[str],
        excluded_dirs: FrozenSet[str] = frozenset(),
        debounce_seconds: float = 2.0,
    ) -> None:
        super().__init__()
        self.root = root
        self.flush_callback = flush_callback
        self.extensions = extensions
        self.excluded_dirs = excluded_dirs
        self.debounce_seconds = debounce_seconds
        self._pending: Dict[Path, str] = {}
        self._last_event = 0.0
        self._lock = threading.Lock()

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, CHANGED)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._record(event.src_path, DELETED)
        self._record(event.dest_path, CHANGED)

    def _is_watched(self, file_path: Path) -> bool:
        if file_path.suffix.lower() not in self.extensions:
            return False
        try:
            rel = file_path.relative_to(self.root)
        except ValueError:
            return False
        # Skip hidden/temp files and excluded directories
        return not any(part.startswith(".") or part in self.excluded_dirs for part in rel.parts)

    def _record(self, src_path, kind: str) -> None:
        file_path = Path(src_path if isinstance(src_path, str) else src_path.decode())
        if not self._is_watched(file_path):
            return
        with self._lock:
            self._pending[file_path] = kind
            self._last_event = time.monotonic()

    def flush_if_due(self, now: Optional[float] = None) -> int:
        """Hand pending changes to the callback once the window has passed quietly."""
        now = time.monotonic() if now is None else now
        with self._lock:
            if not self._pending or now - self._last_event < self.debounce_seconds:
                return 0
            batch = sorted(((kind, path) for path, kind in self._pending.items()), key=lambda x: str(x[1]))
            self._pending.clear()
        self.flush_callback(batch)
        return len(batch)


@watch_app.command("start")
def watch(
    interval: float = typer.Option(2.0, "--interval", "-i", help="Debounce interval in seconds."),
):
    """Watch the loaded project's root and keep its index current.

    Changed and created files are re-indexed one at a time; deleted files
    are removed from the graph. The snapshot is saved after every batch.

    Example:
      dg watch start
      dg watch start --interval 5
    """
    from watchdog.observers import Observer

    from .cli import _open_current_index
    from .storage import ProjectManager

    pm = ProjectManager()
    indexer, snapshots = _open_current_index(pm)
    project = pm.get_current_project()
    watch_path = Path(indexer.project_index.root_path)
    if not watch_path.is_dir():
        console.print(f"[red]✗[/red] Project root not found: {watch_path}")
        raise typer.Exit(1)

    counts = {"reindexed": 0, "removed": 0}

    def apply_batch(batch: List[Tuple[str, Path]]) -> None:
        for kind, file_path in batch:
            try:
                if kind == DELETED:
                    impacted = indexer.remove_file(file_path)
                    counts["removed"] += 1
                    console.print(
                        f"  [yellow]-[/yellow] Removed {file_path.name} ({len(impacted)} impacted)"
                    )
                    continue
                result = indexer.reindex_file(file_path)
                if result is None:
                    console.print(f"  [red]✗[/red] Could not read {file_path.name}")
                    continue
                counts["reindexed"] += 1
                console.print(
                    f"  [green]✓[/green] Re-indexed {result.record.identity} "
                    f"({len(result.impacted)} impacted)"
                )
            except ValueError as exc:
                logger.warning("Ignoring change outside project root: %s", exc)
        snapshots.save(indexer.project_index)

    console.print(f"\n[bold green]Watching[/bold green] [cyan]{watch_path}[/cyan] for changes...")
    console.print(f"[dim]  Debounce:  {interval}s")
    console.print(f"  Project:   {project}")
    console.print("  Press Ctrl+C to stop[/dim]\n")

    handler = CodeChangeHandler(
        watch_path,
        apply_batch,
        extensions=indexer.settings.extensions,
        excluded_dirs=indexer.settings.excluded_dirs,
        debounce_seconds=interval,
    )

    observer = Observer()
    observer.schedule(handler, str(watch_path), recursive=True)
    observer.start()

    try:
        while True:
            time.sleep(0.5)
            handler.flush_if_due()
    except KeyboardInterrupt:
        observer.stop()
        handler.flush_if_due(now=float("inf"))
        console.print(
            f"\n[yellow]Stopped watching.[/yellow] Re-indexed {counts['reindexed']}, "
            f"removed {counts['removed']} file(s)."
        )

    observer.join()
