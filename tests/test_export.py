"""Tests for JSONL export."""
from __future__ import annotations

import json

import pytest

from gitsource.export import export_commit_index, export_graph, load_nodes
from gitsource.graph import FileContentNode, InMemoryGraphSink
from gitsource.history import CommitIndex, CommitRecord
from gitsource.remote import build_remote_descriptor


def _file_node(sink, rel: str) -> FileContentNode:
    return FileContentNode(
        id=sink.allocate_id(f"/work/{rel}"),
        absolute_path=f"/work/{rel}",
        relative_path=rel,
        relative_directory="",
        base=rel,
        name=rel.split(".")[0],
        extension="md",
        kind="file",
        size=3,
        modified_time="2024-01-01T00:00:00+00:00",
        changed_time="2024-01-01T00:00:00+00:00",
        source_instance_name="docs",
        content_digest="d",
        commit_ids=["c1"],
    )


def test_export_graph_writes_nodes_and_manifest(tmp_path):
    sink = InMemoryGraphSink()
    remote = build_remote_descriptor("docs", "https://github.com/org/docs.git", sink)
    commit = CommitRecord(
        id="c1",
        remote_id=remote.id,
        author_name="A",
        author_email="a@example.com",
        date="2024-01-01T00:00:00+00:00",
        message="init",
        content_digest="x",
    )
    nodes = [remote, commit, _file_node(sink, "a.md"), _file_node(sink, "b.md")]

    manifest = export_graph(nodes, tmp_path / "out", source=remote.web_link)

    assert manifest["nodes_written"] == 4
    assert manifest["node_types"] == {"File": 2, "GitCommit": 1, "GitRemote": 1}
    assert manifest["source"] == "https://github.com/org/docs"
    on_disk = json.loads((tmp_path / "out" / "manifest.json").read_text())
    assert on_disk["nodes_written"] == 4

    loaded = list(load_nodes(tmp_path / "out" / "nodes.jsonl"))
    assert [n["type"] for n in loaded] == ["GitRemote", "GitCommit", "File", "File"]
    assert loaded[0]["remote"]["full_name"] == "org/docs"
    assert loaded[2]["commit_ids"] == ["c1"]


def test_export_replaces_previous_snapshot(tmp_path):
    sink = InMemoryGraphSink()
    export_graph([_file_node(sink, "a.md"), _file_node(sink, "b.md")], tmp_path)
    export_graph([_file_node(sink, "c.md")], tmp_path)

    loaded = list(load_nodes(tmp_path / "nodes.jsonl"))
    assert [n["relative_path"] for n in loaded] == ["c.md"]


def test_export_rejects_unknown_nodes(tmp_path):
    with pytest.raises(TypeError):
        export_graph([object()], tmp_path)


def test_export_commit_index(tmp_path):
    index = CommitIndex({"a.md": ["c2", "c1"], "b.md": ["c2"]})
    path = export_commit_index(index, tmp_path)
    assert json.loads(path.read_text()) == {"a.md": ["c2", "c1"], "b.md": ["c2"]}


def test_load_nodes_reports_bad_line(tmp_path):
    nodes_file = tmp_path / "nodes.jsonl"
    nodes_file.write_text('{"id": "1"}\n\n{broken\n')
    with pytest.raises(json.JSONDecodeError, match="line 3"):
        list(load_nodes(nodes_file))
