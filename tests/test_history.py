from __future__ import annotations

from pathlib import Path

import pytest

from gitsource.errors import HistoryWalkFailed
from gitsource.graph import InMemoryGraphSink
from gitsource.history import CommitHistoryIndexer, CommitIndex
from gitsource.repo_sync import RepositorySync


def _index(remote_repo, tmp_path, branch="master", on_commit=None):
    handle = RepositorySync(branch=branch).sync(remote_repo.url, tmp_path / "site")
    indexer = CommitHistoryIndexer("remote-1", InMemoryGraphSink(), branch=branch)
    return indexer.index(handle, on_commit=on_commit)


def test_alternating_files_scenario(remote_repo, tmp_path):
    c1 = remote_repo.commit({"a.txt": "a1\n"})
    c2 = remote_repo.commit({"a.txt": None, "b.txt": "b\n"})
    c3 = remote_repo.commit({"b.txt": None, "a.txt": "a3\n"})

    result = _index(remote_repo, tmp_path)

    assert [r.id for r in result.records] == [c3, c2, c1]
    assert result.index["a.txt"] == (c3, c1)
    assert result.index["b.txt"] == (c2,)
    assert result.tip == c3


def test_unchanged_paths_accumulate_every_snapshot(remote_repo, tmp_path):
    c1 = remote_repo.commit({"keep.md": "stay\n"})
    c2 = remote_repo.commit({"other.md": "x\n"})
    c3 = remote_repo.commit({"other.md": "y\n"})

    result = _index(remote_repo, tmp_path)

    assert result.index.commits_for("keep.md") == [c3, c2, c1]
    assert result.index.commits_for("other.md") == [c3, c2]


def test_nested_paths_are_repository_relative(remote_repo, tmp_path):
    c1 = remote_repo.commit({"docs/guide/intro.md": "hi\n"})

    result = _index(remote_repo, tmp_path)

    assert result.index.commits_for("docs/guide/intro.md") == [c1]
    # Trees themselves are not indexed
    assert "docs" not in result.index
    assert "docs/guide" not in result.index


def test_one_record_per_commit_with_metadata(remote_repo, tmp_path):
    remote_repo.commit({"a.txt": "1\n"}, message="first")
    remote_repo.commit({"a.txt": "2\n"}, message="second")
    seen = []

    result = _index(remote_repo, tmp_path, on_commit=seen.append)

    assert len(result.records) == 2
    assert len({r.id for r in result.records}) == 2
    assert seen == result.records
    newest = result.records[0]
    assert newest.message == "second"
    assert newest.author_name == "Tester"
    assert newest.author_email == "tester@example.com"
    assert newest.remote_id == "remote-1"
    assert newest.date.startswith("2023-11-14T")
    assert len(newest.content_digest) == 64
    assert newest.to_dict()["type"] == "GitCommit"


def test_every_index_id_has_a_record(remote_repo, tmp_path):
    remote_repo.commit({"a.txt": "1\n", "b/c.txt": "2\n"})
    remote_repo.commit({"a.txt": None})

    result = _index(remote_repo, tmp_path)

    record_ids = {r.id for r in result.records}
    for path, ids in result.index.items():
        assert set(ids) <= record_ids


def test_index_is_read_only(remote_repo, tmp_path):
    remote_repo.commit({"a.txt": "1\n"})
    result = _index(remote_repo, tmp_path)

    with pytest.raises(TypeError):
        result.index["a.txt"] = ("x",)  # type: ignore[index]
    assert result.index.commits_for("never.txt") is None


def test_missing_branch_raises_history_walk_failed(remote_repo, tmp_path):
    remote_repo.commit({"a.txt": "1\n"})
    handle = RepositorySync().sync(remote_repo.url, tmp_path / "site")

    with pytest.raises(HistoryWalkFailed):
        CommitHistoryIndexer("remote-1", InMemoryGraphSink(), branch="does-not-exist").index(handle)


def test_empty_index():
    index = CommitIndex()
    assert len(index) == 0
    assert index.to_dict() == {}


def _corrupt_loose_object(repo, hexsha: str) -> None:
    path = Path(repo.git_dir) / "objects" / hexsha[:2] / hexsha[2:]
    assert path.is_file(), "expected a loose object"
    # Replace rather than rewrite: local clones hardlink objects from the remote
    path.unlink()
    path.write_bytes(b"this is not a zlib stream")


def test_unreadable_tree_raises_without_partial_result(remote_repo, tmp_path):
    c1 = remote_repo.commit({"a.txt": "1\n"})
    remote_repo.commit({"b.txt": "2\n"})
    handle = RepositorySync().sync(remote_repo.url, tmp_path / "site")
    _corrupt_loose_object(handle.repo, handle.repo.commit(c1).tree.hexsha)
    seen = []

    indexer = CommitHistoryIndexer("remote-1", InMemoryGraphSink())
    with pytest.raises(HistoryWalkFailed):
        indexer.index(handle, on_commit=seen.append)

    # The newer commit was visited before the walk hit the broken tree
    assert [r.message for r in seen] == ["commit 2", "commit 1"]
