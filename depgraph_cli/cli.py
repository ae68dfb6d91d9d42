"""Typer-based CLI for DepGraph file dependency analysis."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .cli_watch import watch_app
from .config_manager import load_settings
from .graph import SnapshotValidationError
from .graph_export import export_dot, export_json
from .indexer import FileIndexer, WalkAbortedError
from .storage import ProjectManager, SnapshotStore

console = Console()

app = typer.Typer(
    help="DepGraph CLI: file-level dependency graphs, impact analysis and search.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(watch_app, name="watch")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"DepGraph CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log indexing details to stderr."),
):
    """DepGraph CLI: build, query and maintain a project's file dependency graph."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )


def _project_name_from_path(project_path: Path) -> str:
    return project_path.resolve().name.replace(" ", "_")


def _open_current_index(pm: ProjectManager) -> Tuple[FileIndexer, SnapshotStore]:
    project = pm.get_current_project()
    if not project:
        raise typer.BadParameter("No project loaded. Use 'dg load-project <name>' or run 'dg index <path>'.")
    project_dir = pm.project_dir(project)
    if not project_dir.exists():
        raise typer.BadParameter(f"Loaded project '{project}' does not exist in memory.")

    settings = load_settings()
    snapshots = SnapshotStore(project_dir)
    try:
        project_index = snapshots.load(self_edges_are_cycles=settings.self_edges_are_cycles)
    except FileNotFoundError:
        raise typer.BadParameter(f"Project '{project}' has no saved index. Run 'dg index <path>'.")
    except SnapshotValidationError as exc:
        raise typer.BadParameter(f"Project '{project}' snapshot is corrupt: {exc}")

    indexer = FileIndexer(settings=settings)
    indexer.load_index(project_index)
    return indexer, snapshots


def _resolve_identity(indexer: FileIndexer, file_path: str) -> str:
    """Accept an identity as stored, or a path relative to the working directory."""
    record = indexer.get_file_record(file_path)
    if record is not None:
        return record.identity
    try:
        return indexer.identity_for(Path(file_path).resolve())
    except ValueError:
        raise typer.BadParameter(f"'{file_path}' is not inside the indexed project root.")


def _echo_list(title: str, items: List[str], empty: str) -> None:
    if not items:
        typer.echo(empty)
        return
    typer.echo(title)
    for item in items:
        typer.echo(f"- {item}")


@app.command("index")
def index_project(
    project_path: Path = typer.Argument(..., exists=True, file_okay=False, help="Path to source project."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit memory name for project."),
    max_workers: Optional[int] = typer.Option(None, "--max-workers", min=1, help="Parallel file readers."),
    max_file_size: Optional[int] = typer.Option(None, "--max-file-size", min=1, help="Skip files above this many bytes."),
    self_edges_are_cycles: Optional[bool] = typer.Option(
        None, "--self-edge-cycles/--no-self-edge-cycles", help="Report a file importing itself as a cycle.",
    ),
):
    """Walk a project and persist its file dependency graph."""
    pm = ProjectManager()
    resolved_path = project_path.resolve()
    name = project_name or _project_name_from_path(resolved_path)

    settings = load_settings({
        "max_workers": max_workers,
        "max_file_size": max_file_size,
        "self_edges_are_cycles": self_edges_are_cycles,
    })
    with FileIndexer(settings=settings) as indexer:
        try:
            project_index = indexer.index_project(resolved_path)
        except WalkAbortedError as exc:
            typer.echo(f"Indexing aborted: {exc} ({len(exc.partial.records)} files read).", err=True)
            raise typer.Exit(code=1)

        project_dir = pm.create_or_get_project(name)
        SnapshotStore(project_dir).save(project_index)

    pm.set_current_project(name)
    typer.echo(f"Indexed '{resolved_path}' as project '{name}'.")
    typer.echo(
        f"Files: {len(project_index.records)} | Edges: {project_index.graph.edge_count()} "
        f"| Diagnostics: {len(project_index.diagnostics)}"
    )


@app.command("reindex")
def reindex(file_path: str = typer.Argument(..., help="Changed file (path or identity).")):
    """Re-read one changed file and report which files it impacts."""
    pm = ProjectManager()
    indexer, snapshots = _open_current_index(pm)
    identity = _resolve_identity(indexer, file_path)

    result = indexer.reindex_file(identity)
    if result is None:
        typer.echo(f"Could not read '{file_path}'; index left unchanged.", err=True)
        raise typer.Exit(code=1)

    snapshots.save(indexer.project_index)
    typer.echo(f"Re-indexed {result.record.identity}.")
    for dep in result.added_edges:
        typer.echo(f"+ {dep}")
    for dep in result.removed_edges:
        typer.echo(f"- {dep}")
    _echo_list("Impacted files:", result.impacted, "Impacted files: none")


@app.command("remove")
def remove(file_path: str = typer.Argument(..., help="Deleted file (path or identity).")):
    """Forget a deleted file and report which files depended on it."""
    pm = ProjectManager()
    indexer, snapshots = _open_current_index(pm)
    identity = _resolve_identity(indexer, file_path)

    if indexer.get_file_record(identity) is None:
        raise typer.BadParameter(f"'{file_path}' is not in the index.")
    impacted = indexer.remove_file(identity)
    snapshots.save(indexer.project_index)
    typer.echo(f"Removed {identity}.")
    _echo_list("Impacted files:", impacted, "Impacted files: none")


@app.command("deps")
def deps(
    file_path: str = typer.Argument(..., help="File to inspect (path or identity)."),
    transitive: bool = typer.Option(False, "--transitive", "-t", help="Include indirect dependencies."),
    reverse: bool = typer.Option(False, "--reverse", "-r", help="Show direct dependents instead."),
):
    """List what a file depends on (or, with --reverse, what depends on it)."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    identity = _resolve_identity(indexer, file_path)
    graph = indexer.project_index.graph

    if reverse:
        items = sorted(graph.get_dependents(identity))
        label = "Dependents"
    elif transitive:
        items = graph.get_all_dependencies(identity)
        label = "All dependencies"
    else:
        items = sorted(graph.get_dependencies(identity))
        label = "Dependencies"
    _echo_list(f"{label} of {identity}:", items, f"{label} of {identity}: none")


@app.command("impact")
def impact(file_path: str = typer.Argument(..., help="File to analyze (path or identity).")):
    """List every file that would need re-examination if this file changed."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    identity = _resolve_identity(indexer, file_path)
    if identity not in indexer.project_index.graph:
        raise typer.BadParameter(f"'{file_path}' is not in the index.")

    typer.echo(f"Root: {identity}")
    _echo_list("Impacted files:", indexer.project_index.graph.get_impacted_files(identity), "Impacted files: none found")


@app.command("cycles")
def cycles():
    """Report circular dependencies in the current project."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    found = indexer.project_index.graph.detect_circular_dependencies()
    if not found:
        typer.echo("No circular dependencies found.")
        return
    typer.echo(f"Found {len(found)} circular dependencies:")
    for cycle in found:
        typer.echo("  " + " -> ".join(cycle))
    raise typer.Exit(code=1)


@app.command("order")
def order():
    """Print files so that each appears after everything it depends on."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    result = indexer.project_index.graph.get_topological_sort()
    if result is None:
        typer.echo("No valid order: the graph has circular dependencies (see 'dg cycles').", err=True)
        raise typer.Exit(code=1)
    for identity in result:
        typer.echo(identity)


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Text matched against paths, file names and exports."),
    limit: int = typer.Option(20, "--limit", min=1, max=500, help="Maximum number of matches."),
    language: Optional[List[str]] = typer.Option(None, "--language", "-l", help="Restrict to a language (repeatable)."),
):
    """Search indexed files by path, name or exported symbol."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    results = indexer.search_files(query, limit=limit, languages=language or None)

    if not results:
        typer.echo("No matches found.")
        raise typer.Exit(code=0)

    table = Table(title=f"Matches for '{query}'", show_lines=False)
    table.add_column("File", style="cyan", no_wrap=True)
    table.add_column("Language", style="magenta")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Matched", min_width=20)
    for result in results:
        matched = ", ".join(f"{m.kind}:{m.name}" for m in result.matches)
        table.add_row(result.identity, result.record.language, str(result.score), matched)
    console.print(table)


@app.command("usages")
def usages(symbol: str = typer.Argument(..., help="Exact symbol name, e.g. formatName.")):
    """List files that define or import a symbol by name."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    results = indexer.find_usages(symbol)

    if not results:
        typer.echo(f"No usages of '{symbol}' found.")
        raise typer.Exit(code=0)

    table = Table(title=f"Usages of '{symbol}'", show_lines=False)
    table.add_column("File", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Context", min_width=20)
    for result in results:
        for match in result.matches:
            table.add_row(result.identity, match.kind, match.context)
    console.print(table)


@app.command("stats")
def stats(top: int = typer.Option(5, "--top", min=1, max=50, help="Rows in the top-N sections.")):
    """Summarize files, languages and dependency hot spots."""
    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    summary = indexer.get_statistics(top=top)

    console.print(f"[bold]Root:[/bold] {indexer.project_index.root_path}")
    console.print(
        f"Files: {summary.total_files} | Lines: {summary.total_lines} | Bytes: {summary.total_size}"
    )

    languages = Table(title="Languages")
    languages.add_column("Language", style="cyan")
    languages.add_column("Files", justify="right", style="green")
    for name, count in sorted(summary.language_breakdown.items(), key=lambda x: (-x[1], x[0])):
        languages.add_row(name, str(count))
    console.print(languages)

    if summary.most_depended_on:
        hot = Table(title="Most depended on")
        hot.add_column("File", style="cyan", no_wrap=True)
        hot.add_column("Dependents", justify="right", style="green")
        for identity, count in summary.most_depended_on:
            hot.add_row(identity, str(count))
        console.print(hot)

    if summary.circular_dependencies:
        console.print(f"[yellow]Circular dependencies: {len(summary.circular_dependencies)}[/yellow]")
    else:
        console.print("[green]No circular dependencies.[/green]")


@app.command("export-graph")
def export_graph(
    focus: str = typer.Argument("", help="Optional path fragment to export a local subgraph."),
    fmt: str = typer.Option("dot", "--format", "-f", help="Export format: dot or json."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path."),
):
    """Export the dependency graph to Graphviz DOT or JSON."""
    fmt = fmt.lower()
    if fmt not in {"dot", "json"}:
        raise typer.BadParameter("Format must be one of: dot, json")

    pm = ProjectManager()
    indexer, _ = _open_current_index(pm)
    current = pm.get_current_project() or "project"

    if output is None:
        output = Path.cwd() / f"{current}_graph.{fmt}"

    if fmt == "json":
        export_json(indexer.project_index, output, focus=focus)
    else:
        export_dot(indexer.project_index, output, focus=focus)

    typer.echo(f"Exported graph to {output}")


@app.command("list-projects")
def list_projects():
    """List all persisted project memories."""
    pm = ProjectManager()
    projects = pm.list_projects()
    current = pm.get_current_project()

    if not projects:
        typer.echo("No projects indexed yet.")
        raise typer.Exit(code=0)

    for p in projects:
        marker = "*" if p == current else " "
        typer.echo(f"{marker} {p}")


@app.command("load-project")
def load_project(project_name: str = typer.Argument(..., help="Name of project memory to load.")):
    """Switch active project memory."""
    pm = ProjectManager()
    if project_name not in pm.list_projects():
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    pm.set_current_project(project_name)
    typer.echo(f"Loaded project '{project_name}'.")


@app.command("unload-project")
def unload_project():
    """Unload active project memory without deleting data."""
    pm = ProjectManager()
    pm.unload_project()
    typer.echo("Unloaded active project.")


@app.command("delete-project")
def delete_project(project_name: str = typer.Argument(..., help="Project memory to delete.")):
    """Delete persisted project memory."""
    pm = ProjectManager()
    deleted = pm.delete_project(project_name)
    if not deleted:
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    typer.echo(f"Deleted project '{project_name}'.")


@app.command("current-project")
def current_project():
    """Print active project memory name."""
    pm = ProjectManager()
    current = pm.get_current_project()
    typer.echo(current or "No project loaded")


if __name__ == "__main__":
    app()
