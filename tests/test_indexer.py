"""Tests for FileIndexer: whole-project walks, incremental updates and search."""

import shutil
import threading
from pathlib import Path

import pytest

from depgraph_cli.config_manager import IndexerSettings
from depgraph_cli.indexer import FileIndexer, NoIndexAvailableError, WalkAbortedError
from depgraph_cli.models import ProjectIndex
from depgraph_cli.storage import SnapshotStore

SAMPLE_EDGES = [
    ("pkg/__init__.py", "pkg/core.py"),
    ("pkg/core.py", "pkg/models.py"),
    ("src/helper.ts", "src/utils/format.ts"),
    ("src/main.ts", "src/helper.ts"),
    ("src/main.ts", "src/utils/format.ts"),
    ("src/styles/app.css", "src/styles/base.css"),
    ("src/utils/index.ts", "src/utils/format.ts"),
]


def _write(root: Path, rel: str, content: str = "") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestIndexProject:
    def test_sample_project_graph(self, indexed_indexer: FileIndexer):
        """Walking the sample project yields every file and the known edges."""
        index = indexed_indexer.project_index
        assert len(index.records) == 10
        assert index.graph.edges() == SAMPLE_EDGES
        assert index.diagnostics == []
        assert indexed_indexer.is_indexed

    def test_records_and_nodes_match(self, indexed_indexer: FileIndexer):
        """Every record has a graph node and vice versa."""
        index = indexed_indexer.project_index
        assert index.records.identities() == set(index.graph.nodes)

    def test_record_metadata(self, indexed_indexer: FileIndexer):
        """Records carry metadata, raw imports and exports."""
        record = indexed_indexer.get_file_record("src/main.ts")
        assert record.name == "main.ts"
        assert record.extension == ".ts"
        assert record.language == "typescript"
        assert record.imports == ["react", "./helper", "./utils/format"]
        assert record.exports == ["main"]
        assert record.line_count == 9
        assert len(record.content_hash) == 64
        assert record.size > 0

    def test_main_imports_helper(self, indexer: FileIndexer, temp_dir: Path):
        """A relative import becomes an edge and the target sees its importer."""
        root = temp_dir / "scenario"
        _write(root, "main.ts", "import { h } from './helper';\n")
        _write(root, "helper.ts", "export const h = 1;\n")

        index = indexer.index_project(root)
        assert index.graph.edges() == [("main.ts", "helper.ts")]
        assert index.graph.get_impacted_files("helper.ts") == ["main.ts"]

    def test_repeat_indexing_is_deterministic(self, indexer: FileIndexer, project_copy: Path):
        """Indexing the same tree twice produces the same graph."""
        first = indexer.index_project(project_copy)
        second = indexer.index_project(project_copy)
        assert first.graph.to_dict() == second.graph.to_dict()
        assert indexer.project_index is second

    def test_excluded_and_hidden_directories_are_skipped(self, indexer: FileIndexer, temp_dir: Path):
        """Excluded and hidden directories are never walked."""
        root = temp_dir / "walk"
        _write(root, "src/a.ts", "import x from 'lodash';\n")
        _write(root, "node_modules/lodash/index.js", "module.exports = {};\n")
        _write(root, "dist/bundle.js", "")
        _write(root, ".hidden/secret.ts", "")
        _write(root, "notes.txt", "not an indexed extension")

        index = indexer.index_project(root)
        assert index.records.identities() == {"src/a.ts"}
        assert index.graph.edge_count() == 0

    def test_wildcard_exclusion(self, temp_dir: Path):
        """Wildcard patterns in excluded_dirs prune matching directories."""
        root = temp_dir / "walk"
        _write(root, "generated_api/client.ts", "")
        _write(root, "src/a.ts", "")
        settings = IndexerSettings(excluded_dirs={"gen*"}, max_workers=1)

        with FileIndexer(settings=settings) as indexer:
            index = indexer.index_project(root)
        assert index.records.identities() == {"src/a.ts"}

    def test_oversized_file_is_a_diagnostic(self, temp_dir: Path):
        """Files above max_file_size are skipped with a diagnostic."""
        root = temp_dir / "walk"
        _write(root, "big.ts", "x" * 64)
        _write(root, "small.ts", "import './big';\n")
        settings = IndexerSettings(max_file_size=32, max_workers=1)

        with FileIndexer(settings=settings) as indexer:
            index = indexer.index_project(root)
        assert index.records.identities() == {"small.ts"}
        kinds = sorted(d.kind for d in index.diagnostics)
        assert kinds == ["too_large", "unresolved_import"]

    def test_unresolved_relative_import_diagnostic(self, indexer: FileIndexer, temp_dir: Path):
        """Only relative imports that fail to resolve produce diagnostics."""
        root = temp_dir / "walk"
        _write(root, "a.ts", "import b from './missing';\nimport c from 'external-pkg';\n")

        index = indexer.index_project(root)
        assert len(index.diagnostics) == 1
        diagnostic = index.diagnostics[0]
        assert diagnostic.kind == "unresolved_import"
        assert diagnostic.path == "a.ts"
        assert "./missing" in str(diagnostic)

    def test_missing_root_raises(self, indexer: FileIndexer, temp_dir: Path):
        """A missing root raises and leaves the indexer uninitialized."""
        with pytest.raises(FileNotFoundError):
            indexer.index_project(temp_dir / "does-not-exist")
        assert not indexer.is_indexed

    def test_root_disappearing_aborts_walk(self, temp_dir: Path, project_copy: Path, sample_project_path: Path):
        """Root vanishing mid-walk raises with a linked partial index and keeps the old index."""
        doomed = temp_dir / "doomed"
        shutil.copytree(sample_project_path, doomed)

        with FileIndexer(settings=IndexerSettings(max_workers=1)) as indexer:
            previous = indexer.index_project(project_copy)
            original = indexer._read_file

            def vanishing(file_path, root):
                # src/utils/index.ts is the last file walked
                if file_path.name == "index.ts":
                    shutil.rmtree(root, ignore_errors=True)
                return original(file_path, root)

            indexer._read_file = vanishing
            with pytest.raises(WalkAbortedError) as excinfo:
                indexer.index_project(doomed)

            partial = excinfo.value.partial
            assert isinstance(partial, ProjectIndex)
            assert "src/utils/index.ts" not in partial.records
            assert len(partial.records) == 9
            assert partial.graph.edges() == [
                e for e in SAMPLE_EDGES if e != ("src/utils/index.ts", "src/utils/format.ts")
            ]
            assert [d.kind for d in partial.diagnostics] == ["read_error"]
            assert indexer.project_index is previous


class TestIndexFile:
    def test_index_file_does_not_link(self, indexer: FileIndexer, sample_project_path: Path):
        """index_file reads one file without touching any index."""
        indexed = indexer.index_file(sample_project_path / "src" / "helper.ts", sample_project_path)
        assert indexed.record.identity == "src/helper.ts"
        assert indexed.extraction.imports == ["./utils/format"]
        assert indexed.record.exports == ["helper", "assist"]
        assert not indexer.is_indexed

    def test_index_file_unreadable(self, indexer: FileIndexer, temp_dir: Path):
        """A missing file yields None."""
        assert indexer.index_file(temp_dir / "ghost.ts", temp_dir) is None

    def test_index_file_outside_root(self, indexer: FileIndexer, temp_dir: Path, sample_project_path: Path):
        """A file outside the base path yields None."""
        assert indexer.index_file(sample_project_path / "src" / "main.ts", temp_dir) is None


class TestIncremental:
    def test_requires_index(self, indexer: FileIndexer):
        """Incremental operations and queries need an index."""
        with pytest.raises(NoIndexAvailableError, match="No index available"):
            indexer.reindex_file("src/main.ts")
        with pytest.raises(NoIndexAvailableError):
            indexer.remove_file("src/main.ts")
        with pytest.raises(NoIndexAvailableError):
            indexer.search_files("main")
        with pytest.raises(NoIndexAvailableError):
            indexer.get_file_record("src/main.ts")

    def test_dropping_an_import_removes_only_that_edge(self, indexed_indexer: FileIndexer, project_copy: Path):
        """Re-indexing rebuilds only the file's outgoing edges."""
        _write(project_copy, "src/helper.ts", "export const helper = (v: string) => v;\n")

        result = indexed_indexer.reindex_file("src/helper.ts")
        graph = indexed_indexer.project_index.graph

        assert result.removed_edges == ["src/utils/format.ts"]
        assert result.added_edges == []
        assert graph.get_dependencies("src/helper.ts") == set()
        assert graph.get_dependents("src/helper.ts") == {"src/main.ts"}
        assert result.impacted == ["src/main.ts"]
        expected = [e for e in SAMPLE_EDGES if e != ("src/helper.ts", "src/utils/format.ts")]
        assert graph.edges() == expected
        assert indexed_indexer.get_file_record("src/helper.ts").exports == ["helper"]

    def test_reindex_accepts_absolute_path(self, indexed_indexer: FileIndexer, project_copy: Path):
        """Absolute paths map to the same identity as relative ones."""
        result = indexed_indexer.reindex_file(project_copy / "src" / "utils" / "format.ts")
        assert result.record.identity == "src/utils/format.ts"
        assert result.impacted == ["src/helper.ts", "src/main.ts", "src/utils/index.ts"]

    def test_reindex_new_file_adds_node(self, indexed_indexer: FileIndexer, project_copy: Path):
        """A file unknown to the index is added on re-index."""
        _write(project_copy, "src/extra.ts", "import { helper } from './helper';\n")

        result = indexed_indexer.reindex_file("src/extra.ts")
        assert result.added_edges == ["src/helper.ts"]
        assert "src/extra.ts" in indexed_indexer.project_index.graph
        assert indexed_indexer.get_file_record("src/extra.ts") is not None

    def test_reindex_unreadable_file_leaves_index_untouched(self, indexed_indexer: FileIndexer, project_copy: Path):
        """An unreadable file leaves the graph and record as they were."""
        (project_copy / "src" / "helper.ts").unlink()
        before = indexed_indexer.project_index.graph.to_dict()

        assert indexed_indexer.reindex_file("src/helper.ts") is None
        assert indexed_indexer.project_index.graph.to_dict() == before
        assert indexed_indexer.get_file_record("src/helper.ts") is not None

    def test_remove_file(self, indexed_indexer: FileIndexer):
        """Removing a file drops its node and record along with every edge."""
        impacted = indexed_indexer.remove_file("src/utils/format.ts")
        graph = indexed_indexer.project_index.graph

        assert impacted == ["src/helper.ts", "src/main.ts", "src/utils/index.ts"]
        assert "src/utils/format.ts" not in graph
        assert indexed_indexer.get_file_record("src/utils/format.ts") is None
        assert graph.get_dependencies("src/main.ts") == {"src/helper.ts"}

    def test_remove_unknown_file(self, indexed_indexer: FileIndexer):
        """Removing an unknown file is a no-op."""
        assert indexed_indexer.remove_file("src/nope.ts") == []

    def test_concurrent_reindex_keeps_graph_consistent(self, indexed_indexer: FileIndexer):
        """Concurrent re-indexes and searches keep the graph consistent."""
        errors = []
        targets = ["src/main.ts", "src/helper.ts", "pkg/core.py", "src/utils/index.ts"]

        def worker(identity):
            try:
                for _ in range(10):
                    indexed_indexer.reindex_file(identity)
                    indexed_indexer.search_files("format")
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert indexed_indexer.project_index.graph.edges() == SAMPLE_EDGES


class TestSearch:
    def test_exact_name_match(self, indexed_indexer: FileIndexer):
        """Name matching is case-insensitive and reports each match kind."""
        results = indexed_indexer.search_files("HELPER")
        assert [r.identity for r in results] == ["src/helper.ts"]
        kinds = {m.kind for m in results[0].matches}
        assert kinds == {"name", "export"}

    def test_language_filter_and_limit(self, indexed_indexer: FileIndexer):
        """Language filters and limits narrow the result list."""
        assert [r.identity for r in indexed_indexer.search_files("core")] == ["pkg/core.py"]
        assert indexed_indexer.search_files("core", languages=["typescript"]) == []
        assert len(indexed_indexer.search_files("s", limit=2)) == 2

    def test_blank_query(self, indexed_indexer: FileIndexer):
        """A blank query matches nothing."""
        assert indexed_indexer.search_files("   ") == []

    def test_ranking_order(self, indexer: FileIndexer, temp_dir: Path):
        """Match tiers order results before path depth."""
        root = temp_dir / "ranked"
        _write(root, "a/b/futil.ts")
        _write(root, "lib/utility.ts")
        _write(root, "lib/util.ts")
        _write(root, "lib/other.ts", "export function util() {}\n")
        _write(root, "util.ts")
        _write(root, "unrelated.ts")
        indexer.index_project(root)

        results = indexer.search_files("util")
        assert [r.identity for r in results] == [
            "util.ts",
            "lib/other.ts",
            "lib/util.ts",
            "lib/utility.ts",
            "a/b/futil.ts",
        ]
        assert [r.rank[0] for r in results] == [0, 0, 0, 1, 2]

    def test_zero_limit_returns_nothing(self, indexed_indexer: FileIndexer):
        """limit=0 is a real limit, not 'unlimited'."""
        assert indexed_indexer.search_files("s", limit=0) == []
        assert len(indexed_indexer.search_files("s", limit=None)) > 2


class TestFindUsages:
    def test_definition_then_importers(self, indexed_indexer: FileIndexer):
        """The defining file ranks first, then importers by depth and identity."""
        results = indexed_indexer.find_usages("formatName")

        assert [r.identity for r in results] == [
            "src/utils/format.ts", "src/helper.ts", "src/main.ts",
        ]
        assert [m.kind for m in results[0].matches] == ["definition"]
        assert results[1].matches[0].context == "import { formatName } from './utils/format'"

    def test_python_symbol_defined_and_reexported(self, indexed_indexer: FileIndexer):
        """A package that imports and re-exports a name counts as both."""
        results = indexed_indexer.find_usages("run")

        assert [r.identity for r in results] == ["pkg/__init__.py", "pkg/core.py"]
        assert [m.kind for m in results[0].matches] == ["definition", "import"]
        assert results[0].score == 2

    def test_alias_matches_importer(self, indexer: FileIndexer, temp_dir: Path):
        """Both the imported name and its local alias find the importing file."""
        root = temp_dir / "aliases"
        _write(root, "lib.ts", "export function load() {}\n")
        _write(root, "app.ts", "import { load as boot } from './lib';\n")
        indexer.index_project(root)

        assert [r.identity for r in indexer.find_usages("boot")] == ["app.ts"]
        assert [r.identity for r in indexer.find_usages("load")] == ["lib.ts", "app.ts"]

    def test_exact_case_sensitive_match(self, indexed_indexer: FileIndexer):
        """Usage lookup does not fall back to fuzzy matching."""
        assert indexed_indexer.find_usages("formatname") == []
        assert indexed_indexer.find_usages("format") == []
        assert indexed_indexer.find_usages("  ") == []

    def test_requires_index(self, indexer: FileIndexer):
        """Usage lookup needs an index like every other query."""
        with pytest.raises(NoIndexAvailableError):
            indexer.find_usages("helper")

    def test_usages_survive_snapshot_round_trip(self, indexed_indexer: FileIndexer, temp_dir: Path):
        """Imported names are persisted with the file records."""
        snapshots = SnapshotStore(temp_dir / "memory" / "Usages")
        snapshots.save(indexed_indexer.project_index)

        with FileIndexer() as fresh:
            fresh.load_index(snapshots.load())
            assert [r.identity for r in fresh.find_usages("Item")] == ["pkg/models.py", "pkg/core.py"]


class TestLookups:
    def test_files_by_language(self, indexed_indexer: FileIndexer):
        """Records can be listed by language."""
        python = [r.identity for r in indexed_indexer.get_files_by_language("python")]
        assert python == ["pkg/__init__.py", "pkg/core.py", "pkg/models.py"]

    def test_files_by_pattern(self, indexed_indexer: FileIndexer):
        """Records can be filtered by a regex over identities."""
        found = [r.identity for r in indexed_indexer.get_files_by_pattern(r"^src/utils/")]
        assert found == ["src/utils/format.ts", "src/utils/index.ts"]

    def test_identity_for(self, indexed_indexer: FileIndexer, project_copy: Path):
        """identity_for accepts absolute paths and identities."""
        assert indexed_indexer.identity_for(project_copy / "pkg" / "core.py") == "pkg/core.py"
        assert indexed_indexer.identity_for("pkg/core.py") == "pkg/core.py"

    def test_statistics(self, indexed_indexer: FileIndexer):
        """Statistics summarize sizes and languages and name the hubs."""
        stats = indexed_indexer.get_statistics()
        assert stats.total_files == 10
        assert stats.language_breakdown == {
            "markdown": 1, "python": 3, "typescript": 4, "css": 2,
        }
        assert stats.most_depended_on[0] == ("src/utils/format.ts", 3)
        assert stats.circular_dependencies == []
        assert stats.total_lines > 0
        assert len(stats.largest_files) == 10

    def test_dispose(self, indexed_indexer: FileIndexer):
        """dispose drops the index."""
        indexed_indexer.dispose()
        assert not indexed_indexer.is_indexed
        assert indexed_indexer.project_index is None
