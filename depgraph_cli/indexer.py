"""File indexer: builds and incrementally maintains a project's dependency model.

A full index walks the tree once, reading files on a bounded worker pool and
merging each finished file into the File Record Store and Dependency Graph
as it completes. Imports are resolved once every file is known, so the
first-match suffix probing never depends on walk order.

Incremental re-index touches exactly one file: its record is replaced and
only its outgoing edges are rebuilt. Edges from other files into it are
left alone, since their source did not change.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import re
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Tuple, Union

from .config import SNAPSHOT_VERSION
from .config_manager import IndexerSettings
from .graph import DependencyGraph
from .models import (
    UNKNOWN_LANGUAGE,
    Diagnostic,
    Extraction,
    FileRecord,
    IndexedFile,
    ProjectIndex,
    ProjectStatistics,
    ReindexResult,
    SearchMatch,
    SearchResult,
)
from .parser import SymbolExtractor, detect_language
from .resolver import ImportResolver, to_identity
from .store import FileRecordStore

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class NoIndexAvailableError(RuntimeError):
    """Raised when an operation needs a project index and none exists yet."""

    def __init__(self, message: str = "No index available. Run index_project first.") -> None:
        super().__init__(message)


class WalkAbortedError(RuntimeError):
    """Raised when the project root disappears during a whole-project walk."""

    def __init__(self, message: str, partial: ProjectIndex) -> None:
        super().__init__(message)
        self.partial = partial


class FileIndexer:
    """Explicitly owned indexing service for one project at a time.

    Lifecycle: *uninitialized* until :meth:`index_project` (or
    :meth:`load_index`) succeeds, *indexed* afterwards. :meth:`dispose`
    drops the index again. Every mutation and every read of the shared
    graph/store goes through one re-entrant lock.
    """

    def __init__(
        self,
        settings: Optional[IndexerSettings] = None,
        extractor: Optional[SymbolExtractor] = None,
        resolver: Optional[ImportResolver] = None,
    ) -> None:
        self.settings = settings or IndexerSettings()
        self.extractor = extractor or SymbolExtractor()
        self.resolver = resolver or ImportResolver()
        self._index: Optional[ProjectIndex] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_indexed(self) -> bool:
        return self._index is not None

    @property
    def project_index(self) -> Optional[ProjectIndex]:
        return self._index

    def load_index(self, index: ProjectIndex) -> None:
        """Adopt a previously built (e.g. restored) project index."""
        with self._lock:
            index.graph.self_edges_are_cycles = self.settings.self_edges_are_cycles
            self._index = index

    def dispose(self) -> None:
        with self._lock:
            self._index = None

    def __enter__(self) -> "FileIndexer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def _require_index(self) -> ProjectIndex:
        if self._index is None:
            raise NoIndexAvailableError()
        return self._index

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def index_file(self, path: PathLike, base_path: PathLike) -> Optional[IndexedFile]:
        """Read one file into a record plus raw extraction (not linked).

        Returns ``None`` when the file cannot be stat'ed/read or exceeds
        the configured size limit.
        """
        indexed, _ = self._read_file(Path(path), Path(base_path))
        return indexed

    def _read_file(self, file_path: Path, root: Path) -> Tuple[Optional[IndexedFile], Optional[Diagnostic]]:
        try:
            identity = _identity_for(file_path, root)
        except ValueError as exc:
            return None, Diagnostic("index_error", str(file_path), str(exc))

        try:
            stat = file_path.stat()
            if stat.st_size > self.settings.max_file_size:
                message = f"{stat.st_size} bytes exceeds limit of {self.settings.max_file_size}"
                logger.debug("Skipping %s: %s", identity, message)
                return None, Diagnostic("too_large", identity, message)
            raw = file_path.read_bytes()
        except OSError as exc:
            logger.debug("Failed to read %s: %s", file_path, exc)
            return None, Diagnostic("read_error", identity, str(exc))

        content = raw.decode("utf-8", errors="replace")
        language = detect_language(file_path.suffix)
        if language == UNKNOWN_LANGUAGE:
            extraction = Extraction()
        else:
            extraction = self.extractor.extract(content, language)

        record = FileRecord(
            identity=identity,
            path=str(file_path),
            name=file_path.name,
            extension=file_path.suffix,
            language=language,
            size=stat.st_size,
            last_modified=stat.st_mtime,
            imports=list(extraction.imports),
            exports=list(extraction.exports),
            imported_names={spec: list(names) for spec, names in extraction.imported_names.items()},
            line_count=len(content.splitlines()),
            content_hash=hashlib.sha256(raw).hexdigest(),
            indexed_at=time.time(),
        )
        return IndexedFile(record=record, extraction=extraction), None

    # ------------------------------------------------------------------
    # Whole project
    # ------------------------------------------------------------------

    def index_project(self, root_path: PathLike) -> ProjectIndex:
        """Walk *root_path* and rebuild the project index from scratch.

        Raises:
            FileNotFoundError: *root_path* is not a directory.
            WalkAbortedError: the root vanished mid-walk; carries the
                partial index. The previous index stays current.
        """
        root = Path(root_path).resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Project root not found: {root}")

        with self._lock:
            started = time.monotonic()
            logger.info("Starting project indexing: %s", root)
            index = ProjectIndex(
                root_path=str(root),
                records=FileRecordStore(),
                graph=DependencyGraph(self_edges_are_cycles=self.settings.self_edges_are_cycles),
                indexed_at=datetime.now(),
                version=SNAPSHOT_VERSION,
            )

            files = self._discover_files(root)
            aborted = False
            pool = ThreadPoolExecutor(max_workers=self.settings.max_workers)
            try:
                futures = {pool.submit(self._read_file, fp, root): fp for fp in files}
                pending = dict(futures)
                for future in as_completed(futures):
                    del pending[future]
                    if not self._merge_read(index, future, futures[future]) and not root.is_dir():
                        pool.shutdown(wait=True, cancel_futures=True)
                        # reads that finished before the root vanished still count
                        for other, file_path in pending.items():
                            if not other.cancelled():
                                self._merge_read(index, other, file_path)
                        logger.error(
                            "Project root %s disappeared; stopping after %d of %d files",
                            root, len(index.records), len(files),
                        )
                        aborted = True
                        break
            finally:
                pool.shutdown(wait=True)

            # only records already read are candidates; after an abort that is the partial set
            for record in index.records.records():
                self._link(index, record)

            if aborted:
                raise WalkAbortedError(f"Project root disappeared: {root}", partial=index)

            self._index = index
            logger.info(
                "Project indexing complete: %s (%d files, %d edges, %d diagnostics, %.2fs)",
                root, len(index.records), index.graph.edge_count(),
                len(index.diagnostics), time.monotonic() - started,
            )
            return index

    @staticmethod
    def _merge_read(
        index: ProjectIndex,
        future: Future[Tuple[Optional[IndexedFile], Optional[Diagnostic]]],
        file_path: Path,
    ) -> bool:
        """Fold one finished read into *index*. ``False`` when it failed."""
        try:
            indexed, diagnostic = future.result()
        except Exception as exc:
            logger.warning("Failed to index %s: %s", file_path, exc)
            indexed, diagnostic = None, Diagnostic("index_error", str(file_path), str(exc))

        if indexed is None:
            index.diagnostics.append(diagnostic)
            return False
        index.records.put(indexed.record)
        index.graph.add_node(indexed.record.identity)
        return True

    def _discover_files(self, root: Path) -> List[Path]:
        found: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not self._is_excluded(d))
            for name in sorted(filenames):
                if Path(name).suffix.lower() in self.settings.extensions:
                    found.append(Path(dirpath) / name)
        return found

    def _is_excluded(self, dirname: str) -> bool:
        if dirname.startswith("."):
            return True
        for pattern in self.settings.excluded_dirs:
            if "*" in pattern or "?" in pattern:
                if fnmatch.fnmatch(dirname, pattern):
                    return True
            elif dirname == pattern:
                return True
        return False

    def _link(self, index: ProjectIndex, record: FileRecord) -> List[str]:
        """Resolve *record*'s imports and add one edge per intra-project hit."""
        added: List[str] = []
        for specifier in record.imports:
            resolution = self.resolver.resolve(
                specifier, record.identity, index.records, language=record.language,
            )
            if resolution.is_resolved:
                index.graph.add_edge(record.identity, resolution.identity)
                added.append(resolution.identity)
            elif not resolution.is_external:
                index.diagnostics.append(
                    Diagnostic("unresolved_import", record.identity, resolution.reason)
                )
        return sorted(set(added))

    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------

    def reindex_file(self, path: PathLike) -> Optional[ReindexResult]:
        """Re-read one file and rebuild only its outgoing edges.

        Relative *path* values are taken relative to the project root.
        Returns ``None`` (index untouched) when the file cannot be read.
        """
        with self._lock:
            index = self._require_index()
            root = Path(index.root_path)
            file_path = _absolute(path, root)

            indexed, diagnostic = self._read_file(file_path, root)
            if indexed is None:
                logger.warning("Re-index skipped for %s: %s", file_path, diagnostic.message)
                index.diagnostics.append(diagnostic)
                return None

            record = indexed.record
            identity = record.identity
            index.diagnostics = [d for d in index.diagnostics if d.path != identity]

            removed = index.graph.remove_outgoing_edges(identity)
            index.records.put(record)
            index.graph.add_node(identity)
            added = self._link(index, record)
            impacted = index.graph.get_impacted_files(identity)

            logger.info(
                "Re-indexed %s: %d dependencies, %d impacted files",
                identity, len(added), len(impacted),
            )
            return ReindexResult(
                record=record,
                impacted=impacted,
                added_edges=sorted(set(added) - set(removed)),
                removed_edges=sorted(set(removed) - set(added)),
            )

    def remove_file(self, path: PathLike) -> List[str]:
        """Forget a deleted file entirely. Returns the files it impacted."""
        with self._lock:
            index = self._require_index()
            identity = self.identity_for(path)
            if identity not in index.records and identity not in index.graph:
                return []
            impacted = index.graph.get_impacted_files(identity)
            index.graph.remove_node(identity)
            index.records.remove(identity)
            index.diagnostics = [d for d in index.diagnostics if d.path != identity]
            logger.info("Removed %s from index (%d impacted files)", identity, len(impacted))
            return impacted

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def identity_for(self, path: PathLike) -> str:
        """Map an identity, root-relative path or absolute path to an identity."""
        with self._lock:
            index = self._require_index()
            text = os.fspath(path)
            if text in index.records or text in index.graph:
                return text
            return _identity_for(_absolute(text, Path(index.root_path)), Path(index.root_path))

    def get_file_record(self, identity: str) -> Optional[FileRecord]:
        with self._lock:
            return self._require_index().records.get(identity)

    def get_files_by_language(self, language: str) -> List[FileRecord]:
        with self._lock:
            return self._require_index().records.by_language(language)

    def get_files_by_pattern(self, pattern: Union[str, Pattern[str]]) -> List[FileRecord]:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            return [r for r in self._require_index().records if regex.search(r.identity)]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_files(
        self,
        query: str,
        limit: Optional[int] = None,
        languages: Optional[Iterable[str]] = None,
    ) -> List[SearchResult]:
        """Match *query* against identities, file names and exported names.

        Ordering: exact name matches, then prefix, then substring; ties go
        to shallower paths, then lexicographic identity.
        """
        with self._lock:
            index = self._require_index()
            needle = query.strip().lower()
            if not needle:
                return []
            wanted = set(languages) if languages else None

            results: List[SearchResult] = []
            for record in index.records.records():
                if wanted is not None and record.language not in wanted:
                    continue
                result = _match_record(record, needle)
                if result is not None:
                    results.append(result)

            results.sort(key=lambda r: r.rank)
            return results[:limit] if limit is not None else results

    def find_usages(self, symbol: str) -> List[SearchResult]:
        """Files that define *symbol* (export it) or import it by name.

        Matching is exact and case-sensitive. Defining files come first,
        then importing files; ties go to shallower paths, then identity.
        """
        with self._lock:
            index = self._require_index()
            name = symbol.strip()
            if not name:
                return []

            results: List[SearchResult] = []
            for record in index.records.records():
                matches: List[SearchMatch] = []
                if name in record.exports:
                    matches.append(SearchMatch("definition", name, f"[definition] export {name}"))
                for specifier in record.imports:
                    if name in record.imported_names.get(specifier, ()):
                        matches.append(
                            SearchMatch("import", name, f"import {{ {name} }} from '{specifier}'")
                        )
                if not matches:
                    continue
                tier = 0 if matches[0].kind == "definition" else 1
                results.append(SearchResult(
                    record=record,
                    matches=matches,
                    score=len(matches),
                    rank=(tier, record.identity.count("/"), record.identity),
                ))

            results.sort(key=lambda r: r.rank)
            return results

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self, top: int = 10) -> ProjectStatistics:
        with self._lock:
            index = self._require_index()
            records = index.records.records()
            graph = index.graph

            by_size = sorted(records, key=lambda r: (-r.size, r.identity))[:top]
            depended = [(r.identity, len(graph.get_dependents(r.identity))) for r in records]
            depended = sorted(
                (item for item in depended if item[1] > 0), key=lambda x: (-x[1], x[0]),
            )[:top]

            return ProjectStatistics(
                total_files=len(records),
                total_size=sum(r.size for r in records),
                total_lines=sum(r.line_count for r in records),
                language_breakdown=dict(Counter(r.language for r in records)),
                extension_breakdown=dict(Counter(r.extension for r in records)),
                largest_files=[(r.identity, r.size) for r in by_size],
                most_depended_on=depended,
                circular_dependencies=graph.detect_circular_dependencies(),
            )


# ===================================================================
# Helpers
# ===================================================================

def _absolute(path: PathLike, root: Path) -> Path:
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return root / candidate


def _identity_for(file_path: Path, root: Path) -> str:
    try:
        return to_identity(Path(os.path.abspath(file_path)), Path(os.path.abspath(root)))
    except ValueError:
        return to_identity(file_path.resolve(), root.resolve())


_NAME_SCORES = (10, 8, 6)
_EXPORT_SCORES = (5, 4, 3)
_PATH_SCORES = (4, 3, 2)


def _tier(candidate: str, needle: str) -> Optional[int]:
    """0 = exact, 1 = prefix, 2 = substring, None = no match."""
    if candidate == needle:
        return 0
    if candidate.startswith(needle):
        return 1
    if needle in candidate:
        return 2
    return None


def _match_record(record: FileRecord, needle: str) -> Optional[SearchResult]:
    matches: List[SearchMatch] = []
    tiers: List[int] = []
    score = 0

    name_tier = _tier(record.stem.lower(), needle)
    full_name_tier = _tier(record.name.lower(), needle)
    if full_name_tier is not None and (name_tier is None or full_name_tier < name_tier):
        name_tier = full_name_tier
    if name_tier is not None:
        tiers.append(name_tier)
        score += _NAME_SCORES[name_tier]
        matches.append(SearchMatch("name", record.name, f"File: {record.name}"))
    else:
        path_tier = _tier(record.identity.lower(), needle)
        if path_tier is not None:
            # a full-path hit is never an exact *name* match
            path_tier = max(path_tier, 1)
            tiers.append(path_tier)
            score += _PATH_SCORES[path_tier]
            matches.append(SearchMatch("path", record.identity, f"Path: {record.identity}"))

    for export in record.exports:
        export_tier = _tier(export.lower(), needle)
        if export_tier is None:
            continue
        tiers.append(export_tier)
        score += _EXPORT_SCORES[export_tier]
        matches.append(SearchMatch("export", export, f"export {export}"))

    if not matches:
        return None
    rank = (min(tiers), record.identity.count("/"), record.identity)
    return SearchResult(record=record, matches=matches, score=score, rank=rank)
