"""Core data models used by indexing, search, and persistence layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .graph import DependencyGraph
    from .store import FileRecordStore

UNKNOWN_LANGUAGE = "unknown"


@dataclass
class Extraction:
    """Raw output of the symbol extractor for one file."""

    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    # specifier -> names it binds (imported name and alias, as written)
    imported_names: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class FileRecord:
    identity: str
    path: str
    name: str
    extension: str
    language: str
    size: int
    last_modified: float
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    imported_names: Dict[str, List[str]] = field(default_factory=dict)
    line_count: int = 0
    content_hash: str = ""
    indexed_at: float = 0.0

    @property
    def stem(self) -> str:
        if self.extension and self.name.endswith(self.extension):
            return self.name[: -len(self.extension)]
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "path": self.path,
            "name": self.name,
            "extension": self.extension,
            "language": self.language,
            "size": self.size,
            "last_modified": self.last_modified,
            "imports": list(self.imports),
            "exports": list(self.exports),
            "imported_names": {spec: list(names) for spec, names in self.imported_names.items()},
            "line_count": self.line_count,
            "content_hash": self.content_hash,
            "indexed_at": self.indexed_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FileRecord":
        try:
            return cls(
                identity=payload["identity"],
                path=payload["path"],
                name=payload["name"],
                extension=payload.get("extension", ""),
                language=payload.get("language", UNKNOWN_LANGUAGE),
                size=int(payload.get("size", 0)),
                last_modified=float(payload.get("last_modified", 0.0)),
                imports=list(payload.get("imports", [])),
                exports=list(payload.get("exports", [])),
                imported_names={
                    str(spec): list(names)
                    for spec, names in dict(payload.get("imported_names", {})).items()
                },
                line_count=int(payload.get("line_count", 0)),
                content_hash=payload.get("content_hash", ""),
                indexed_at=float(payload.get("indexed_at", 0.0)),
            )
        except KeyError as exc:
            raise ValueError(f"File record is missing field {exc}") from exc


@dataclass
class IndexedFile:
    """A freshly read file: its record plus the raw extraction, not yet linked."""

    record: FileRecord
    extraction: Extraction


@dataclass
class Diagnostic:
    """Soft, per-file problem collected during indexing."""

    kind: str  # read_error, too_large, unresolved_import, index_error
    path: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.path}: {self.message}"


@dataclass
class SearchMatch:
    kind: str  # path, name, export, definition, import
    name: str
    context: str


@dataclass
class SearchResult:
    record: FileRecord
    matches: List[SearchMatch]
    score: int
    rank: Tuple[int, int, str]

    @property
    def identity(self) -> str:
        return self.record.identity


@dataclass
class ReindexResult:
    record: FileRecord
    impacted: List[str]
    added_edges: List[str] = field(default_factory=list)
    removed_edges: List[str] = field(default_factory=list)


@dataclass
class ProjectStatistics:
    total_files: int
    total_size: int
    total_lines: int
    language_breakdown: Dict[str, int]
    extension_breakdown: Dict[str, int]
    largest_files: List[Tuple[str, int]]
    most_depended_on: List[Tuple[str, int]]
    circular_dependencies: List[List[str]]


@dataclass
class ProjectIndex:
    """Aggregate of everything known about one indexed project root."""

    root_path: str
    records: FileRecordStore
    graph: DependencyGraph
    indexed_at: datetime
    diagnostics: List[Diagnostic] = field(default_factory=list)
    version: Optional[str] = None
