"""Persistence layer for project-specific dependency graph memory.

Each project gets a memory directory under ``MEMORY_DIR`` holding three
flat JSON documents:

- ``graph.json``   -> graph snapshot ``{"nodes": [...], "edges": [...]}``
- ``files.json``   -> list of file record dicts
- ``project.json`` -> root path, timestamps, version and diagnostics
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import MEMORY_DIR, SNAPSHOT_VERSION, STATE_FILE, ensure_base_dirs
from .graph import DependencyGraph, SnapshotValidationError
from .models import Diagnostic, FileRecord, ProjectIndex
from .store import FileRecordStore

logger = logging.getLogger(__name__)


# ===================================================================
# ProjectManager  (manages directories / active project)
# ===================================================================

class ProjectManager:
    """Manage project memory directories and active project state."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: str) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not STATE_FILE.exists():
            return None
        try:
            payload = json.loads(STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return payload.get("current_project")

    def unload_project(self) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": None}, indent=2),
            encoding="utf-8",
        )

    def delete_project(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.exists():
            return False
        shutil.rmtree(path)
        if self.get_current_project() == project_name:
            self.unload_project()
        return True


# ===================================================================
# SnapshotStore  (flat JSON files)
# ===================================================================

class SnapshotStore:
    """Save and restore a :class:`ProjectIndex` in one memory directory."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self.graph_path = project_dir / "graph.json"
        self.files_path = project_dir / "files.json"
        self.meta_path = project_dir / "project.json"

    def exists(self) -> bool:
        return self.graph_path.exists() and self.files_path.exists()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def set_metadata(self, payload: Dict[str, Any]) -> None:
        self.meta_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def get_metadata(self) -> Dict[str, Any]:
        if not self.meta_path.exists():
            return {}
        try:
            return json.loads(self.meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def save(self, project_index: ProjectIndex) -> None:
        self.project_dir.mkdir(parents=True, exist_ok=True)
        records = project_index.records.records()
        self.graph_path.write_text(project_index.graph.to_json(), encoding="utf-8")
        self.files_path.write_text(
            json.dumps([r.to_dict() for r in records], indent=2), encoding="utf-8",
        )
        self.set_metadata({
            "root_path": project_index.root_path,
            "indexed_at": project_index.indexed_at.isoformat(),
            "version": project_index.version or SNAPSHOT_VERSION,
            "file_count": len(records),
            "edge_count": project_index.graph.edge_count(),
            "diagnostics": [
                {"kind": d.kind, "path": d.path, "message": d.message}
                for d in project_index.diagnostics
            ],
        })
        logger.info(
            "Saved snapshot of %s to %s (%d files)",
            project_index.root_path, self.project_dir, len(records),
        )

    def load(self, self_edges_are_cycles: bool = False) -> ProjectIndex:
        """Restore the saved project index.

        Raises:
            FileNotFoundError: no snapshot has been saved here.
            SnapshotValidationError: the snapshot is malformed (duplicate
                records included) or its graph nodes and file records disagree.
        """
        if not self.exists():
            raise FileNotFoundError(f"No snapshot in {self.project_dir}")

        graph = DependencyGraph.from_json(
            self.graph_path.read_text(encoding="utf-8"),
            self_edges_are_cycles=self_edges_are_cycles,
        )
        try:
            payload = json.loads(self.files_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise SnapshotValidationError(f"files.json is not valid JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise SnapshotValidationError("files.json must hold a list of records")
        try:
            parsed = [FileRecord.from_dict(item) for item in payload]
        except (TypeError, ValueError) as exc:
            raise SnapshotValidationError(f"Invalid file record: {exc}") from exc
        records = FileRecordStore()
        for record in parsed:
            if record.identity in records:
                raise SnapshotValidationError(f"Duplicate file record: {record.identity}")
            records.put(record)

        node_set = set(graph.nodes)
        record_set = records.identities()
        if node_set != record_set:
            missing = sorted(node_set ^ record_set)
            raise SnapshotValidationError(
                f"Graph nodes and file records disagree on: {', '.join(missing[:5])}"
            )

        meta = self.get_metadata()
        try:
            indexed_at = datetime.fromisoformat(meta["indexed_at"])
        except (KeyError, TypeError, ValueError):
            indexed_at = datetime.now()
        diagnostics = [
            Diagnostic(d.get("kind", ""), d.get("path", ""), d.get("message", ""))
            for d in meta.get("diagnostics", [])
            if isinstance(d, dict)
        ]
        logger.debug("Loaded snapshot from %s (%d files)", self.project_dir, len(records))
        return ProjectIndex(
            root_path=meta.get("root_path", ""),
            records=records,
            graph=graph,
            indexed_at=indexed_at,
            diagnostics=diagnostics,
            version=meta.get("version"),
        )
