"""Graph export helpers for Graphviz DOT and JSON outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Tuple

from .models import ProjectIndex

Edge = Tuple[str, str]


def export_dot(project_index: ProjectIndex, output_file: Path, focus: str = "") -> None:
    records = {r.identity: r for r in project_index.records.records()}
    selected_nodes, selected_edges = _focused_subgraph(
        project_index.graph.nodes, project_index.graph.edges(), focus,
    )

    lines = ["digraph DependencyGraph {"]
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box];")

    for identity in selected_nodes:
        record = records.get(identity)
        language = record.language if record else "unknown"
        label = f"{identity}\\n({language})"
        lines.append(f'  "{_esc(identity)}" [label="{_esc(label)}"];')

    for src, dst in selected_edges:
        lines.append(f'  "{_esc(src)}" -> "{_esc(dst)}";')

    lines.append("}")
    output_file.write_text("\n".join(lines) + "\n", encoding="utf-8")


def export_json(project_index: ProjectIndex, output_file: Path, focus: str = "") -> None:
    """Write the (optionally focused) graph in the snapshot shape, plus languages."""
    records = {r.identity: r for r in project_index.records.records()}
    selected_nodes, selected_edges = _focused_subgraph(
        project_index.graph.nodes, project_index.graph.edges(), focus,
    )
    payload = {
        "root_path": project_index.root_path,
        "nodes": selected_nodes,
        "edges": [{"from": src, "to": dst} for src, dst in selected_edges],
        "languages": {
            identity: records[identity].language
            for identity in selected_nodes
            if identity in records
        },
    }
    output_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _focused_subgraph(nodes: List[str], edges: List[Edge], focus: str) -> Tuple[List[str], List[Edge]]:
    if not focus:
        return sorted(nodes), edges

    focus_ids = {identity for identity in nodes if focus in identity}
    if not focus_ids:
        return sorted(nodes), edges

    edge_subset = [e for e in edges if e[0] in focus_ids or e[1] in focus_ids]
    node_subset = set(focus_ids)
    for src, dst in edge_subset:
        node_subset.add(src)
        node_subset.add(dst)
    return sorted(node_subset), edge_subset


def _esc(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
