"""JSONL export of a graph snapshot.

Writes one JSON object per node to ``nodes.jsonl`` plus a ``manifest.json``
with per-type counts.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator

from .history import CommitIndex


def node_to_dict(node: Any) -> Dict[str, Any]:
    if hasattr(node, "to_dict"):
        return node.to_dict()
    raise TypeError(f"Cannot export node of type {type(node).__name__}")


def export_graph(nodes: Iterable[Any], output_dir: Path, source: str = "") -> Dict[str, Any]:
    """Export nodes to ``output_dir/nodes.jsonl``, replacing earlier exports.

    Returns:
        The manifest written alongside
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    nodes_file = output_dir / "nodes.jsonl"

    counts: Counter = Counter()
    with open(nodes_file, "w", encoding="utf-8") as f:
        for node in nodes:
            data = node_to_dict(node)
            counts[data["type"]] += 1
            f.write(json.dumps(data, sort_keys=True, default=str) + "\n")

    manifest = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "source": source,
        "nodes_written": sum(counts.values()),
        "node_types": dict(sorted(counts.items())),
        "files": {"nodes": "nodes.jsonl"},
    }
    with open(output_dir / "manifest.json", "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2)

    return manifest


def export_commit_index(index: CommitIndex, output_dir: Path) -> Path:
    """Write the path -> commits mapping as ``commit_index.json``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / "commit_index.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(index.to_dict(), f, indent=2, sort_keys=True)
    return path


def load_nodes(nodes_file: Path) -> Iterator[Dict[str, Any]]:
    """Load nodes from a JSONL file.

    Raises:
        json.JSONDecodeError: If a line contains invalid JSON (with line number context)
    """
    with open(nodes_file, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            if line.strip():
                try:
                    yield json.loads(line)
                except json.JSONDecodeError as e:
                    raise json.JSONDecodeError(
                        f"Invalid JSON at line {line_num} in {nodes_file}: {e.msg}",
                        e.doc,
                        e.pos,
                    ) from e
