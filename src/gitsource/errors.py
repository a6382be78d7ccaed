"""Exception taxonomy for git sourcing."""

from __future__ import annotations

from typing import Sequence


class GitSourceError(Exception):
    """Base exception for git sourcing operations."""
    pass


class ConfigError(GitSourceError):
    """Configuration loading or validation error."""
    pass


class RepositorySyncError(GitSourceError):
    """Failed to bring the local working tree up to date."""
    pass


class RepositoryUnreachable(RepositorySyncError):
    """Neither clone nor fetch could reach the remote repository."""
    pass


class MergeFailed(RepositorySyncError):
    """Merging the remote branch into the local branch failed."""
    pass


class HistoryWalkFailed(GitSourceError):
    """A commit or tree could not be read while walking history."""
    pass


class NodeBuildFailed(GitSourceError):
    """A path vanished or was unreadable when building its content node."""

    def __init__(self, path: str, cause: BaseException | None = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to build node for {path}{detail}")


class FlushFailed(GitSourceError):
    """One or more queued mutations failed during the initial flush."""

    def __init__(self, failures: Sequence[BaseException]):
        self.failures = list(failures)
        super().__init__(
            f"{len(self.failures)} queued mutation(s) failed during flush: "
            + "; ".join(str(f) for f in self.failures)
        )


class QueueClosedError(RuntimeError):
    """A pending-op queue was used after it was flushed."""
    pass
