"""Commit history indexing.

Walks every commit reachable from the primary branch tip, newest first, and
records which commits' tree snapshots contain each path. A path's entry lists
every commit whose snapshot contained it, not only the commits that changed it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from git import Commit, Repo
from git.exc import BadName, BadObject, GitCommandError

from .errors import HistoryWalkFailed
from .observability import log_debug, timeit
from .repo_sync import WorkingTreeHandle

NODE_TYPE = "GitCommit"


@dataclass(frozen=True)
class CommitRecord:
    """Immutable metadata for one commit.

    Attributes:
        id: Commit hexsha
        remote_id: GitRemote node this commit belongs to
        date: Committer timestamp, ISO 8601 with offset
    """
    id: str
    remote_id: str
    author_name: str
    author_email: str
    date: str
    message: str
    content_digest: str

    node_type = NODE_TYPE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.node_type
        return data


class CommitIndex(Mapping):
    """Read-only mapping of repository-relative path -> commit ids, newest first."""

    def __init__(self, entries: Optional[Dict[str, List[str]]] = None) -> None:
        self._entries: Dict[str, Tuple[str, ...]] = {
            path: tuple(ids) for path, ids in (entries or {}).items()
        }

    def __getitem__(self, path: str) -> Tuple[str, ...]:
        return self._entries[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def commits_for(self, path: str) -> Optional[List[str]]:
        """Commit ids for ``path``, or None when it has no recorded history."""
        ids = self._entries.get(path)
        return list(ids) if ids is not None else None

    def to_dict(self) -> Dict[str, List[str]]:
        return {path: list(ids) for path, ids in self._entries.items()}


@dataclass
class HistoryResult:
    index: CommitIndex
    records: List[CommitRecord] = field(default_factory=list)
    tip: Optional[str] = None


class CommitHistoryIndexer:
    """Builds the CommitIndex and CommitRecords for a working tree.

    Args:
        remote_id: Id of the session's GitRemote node
        sink: Content-graph sink, used for digests only
        branch: Local branch whose tip starts the walk
    """

    def __init__(self, remote_id: str, sink, branch: str = "master") -> None:
        self.remote_id = remote_id
        self.sink = sink
        self.branch = branch

    def _record(self, commit: Commit) -> CommitRecord:
        payload = {
            "sha": commit.hexsha,
            "author_name": commit.author.name or "",
            "author_email": commit.author.email or "",
            "date": commit.committed_datetime.isoformat(),
            "message": commit.message,
        }
        return CommitRecord(
            id=commit.hexsha,
            remote_id=self.remote_id,
            author_name=payload["author_name"],
            author_email=payload["author_email"],
            date=payload["date"],
            message=payload["message"],
            content_digest=self.sink.digest(payload),
        )

    def _resolve_tip(self, repo: Repo) -> Commit:
        try:
            return repo.commit(self.branch)
        except (BadName, BadObject, ValueError, GitCommandError) as e:
            raise HistoryWalkFailed(
                f"Cannot resolve tip of branch '{self.branch}' in {repo.working_dir}: {e}"
            ) from e

    def index(
        self,
        handle: WorkingTreeHandle,
        on_commit: Optional[Callable[[CommitRecord], None]] = None,
    ) -> HistoryResult:
        """Walk the full history and return the index plus one record per commit.

        Blocks until every commit and tree entry has been visited.

        Raises:
            HistoryWalkFailed: On any unreadable commit or tree; no partial result
        """
        repo = handle.repo
        with timeit("history.index", branch=self.branch, path=str(handle.path)) as info:
            tip = self._resolve_tip(repo)
            records: List[CommitRecord] = []
            entries: Dict[str, List[str]] = {}
            try:
                for commit in repo.iter_commits(tip.hexsha, date_order=True):
                    record = self._record(commit)
                    records.append(record)
                    if on_commit is not None:
                        on_commit(record)
                    for item in commit.tree.traverse():
                        if item.type != "blob":
                            continue
                        entries.setdefault(item.path, []).append(commit.hexsha)
            except (BadName, BadObject, GitCommandError, ValueError, OSError) as e:
                raise HistoryWalkFailed(f"History walk failed at {repo.working_dir}: {e}") from e

            info["commits"] = len(records)
            info["paths"] = len(entries)
            log_debug("history walked", tip=tip.hexsha, commits=len(records), paths=len(entries))

        return HistoryResult(index=CommitIndex(entries), records=records, tip=tip.hexsha)
