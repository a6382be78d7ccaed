"""Local working copy management for a remote repository.

Clones the remote when no working tree exists yet, otherwise fetches every
remote and merges the remote-tracking primary branch into the local one.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict

# GitPython for in-process git operations
from git import Repo, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import MergeFailed, RepositoryUnreachable
from .observability import log_debug, timeit


@dataclass
class WorkingTreeHandle:
    """An up-to-date local checkout.

    Attributes:
        path: Working tree root
        repo: Open GitPython repository
        cloned: True when this sync created the checkout
    """
    path: Path
    repo: Repo
    cloned: bool = False


class RepositorySync:
    """Ensures a local working copy of a remote repository exists and is current.

    Args:
        branch: Local primary branch
        remote_name: Remote whose ``<remote_name>/<branch>`` is merged into ``branch``
        verify_certificates: When False, clone and fetch skip TLS verification
    """

    def __init__(
        self,
        branch: str = "master",
        remote_name: str = "origin",
        verify_certificates: bool = True,
    ) -> None:
        self.branch = branch
        self.remote_name = remote_name
        self.verify_certificates = verify_certificates

    @property
    def remote_branch(self) -> str:
        return f"{self.remote_name}/{self.branch}"

    @property
    def _env(self) -> Dict[str, str]:
        # Never block on a credential prompt
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if not self.verify_certificates:
            env["GIT_SSL_NO_VERIFY"] = "1"
        return env

    def sync(self, remote_url: str, local_path: Path) -> WorkingTreeHandle:
        """Clone or update ``local_path`` from ``remote_url``.

        Raises:
            RepositoryUnreachable: If clone (or fetch, for an existing tree) fails, or
                local_path holds something other than a working tree
            MergeFailed: If the remote branch cannot be merged
        """
        local_path = Path(local_path)
        if (local_path / ".git").exists():
            with timeit("repo.update", remote=remote_url, path=str(local_path)):
                repo = self._open(local_path)
                self._fetch_all(repo, remote_url)
                self._merge(repo)
            return WorkingTreeHandle(path=local_path, repo=repo, cloned=False)

        with timeit("repo.clone", remote=remote_url, path=str(local_path)):
            repo = self._clone(remote_url, local_path)
        return WorkingTreeHandle(path=local_path, repo=repo, cloned=True)

    def _open(self, local_path: Path) -> Repo:
        try:
            return Repo(local_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise RepositoryUnreachable(f"Cannot open working tree at {local_path}: {e}") from e

    def _clone(self, remote_url: str, local_path: Path) -> Repo:
        # Never clobber existing data; git clones into a missing or empty directory
        if local_path.exists() and (not local_path.is_dir() or any(local_path.iterdir())):
            raise RepositoryUnreachable(
                f"Cannot clone into {local_path}: path exists and is not a git working tree"
            )
        local_path.parent.mkdir(parents=True, exist_ok=True)

        log_debug(f"GIT_OP_START: clone {remote_url}")
        try:
            repo = Repo.clone_from(remote_url, local_path, env=self._env)
        except GitCommandError as e:
            raise RepositoryUnreachable(f"Failed to clone {remote_url}: {e}") from e
        log_debug(f"GIT_OP_END: clone {remote_url}")
        return repo

    def _fetch_all(self, repo: Repo, remote_url: str) -> None:
        log_debug("GIT_OP_START: fetch --all")
        try:
            with repo.git.custom_environment(**self._env):
                for remote in repo.remotes:
                    remote.fetch()
        except GitCommandError as e:
            raise RepositoryUnreachable(f"Failed to fetch {remote_url}: {e}") from e
        log_debug("GIT_OP_END: fetch --all")

    def _merge(self, repo: Repo) -> None:
        log_debug(f"GIT_OP_START: merge {self.remote_branch} into {self.branch}")
        try:
            if repo.head.is_detached or repo.active_branch.name != self.branch:
                repo.git.checkout(self.branch)
            repo.git.merge(self.remote_branch, "--no-edit")
        except GitCommandError as e:
            try:
                repo.git.merge("--abort")
            except GitCommandError:
                # Nothing to abort when the merge never started
                pass
            raise MergeFailed(
                f"Failed to merge {self.remote_branch} into {self.branch}: {e}"
            ) from e
        log_debug(f"GIT_OP_END: merge {self.remote_branch} into {self.branch}")


def sync_repository(
    remote_url: str,
    local_path: Path,
    branch: str = "master",
    remote_name: str = "origin",
    verify_certificates: bool = True,
) -> WorkingTreeHandle:
    """Convenience wrapper around ``RepositorySync.sync``."""
    syncer = RepositorySync(
        branch=branch,
        remote_name=remote_name,
        verify_certificates=verify_certificates,
    )
    return syncer.sync(remote_url, local_path)
