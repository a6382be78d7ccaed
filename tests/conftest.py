from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from git import Actor, Repo


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    os.environ.setdefault("PYTHONPATH", str(src))


@pytest.fixture(scope="session")
def anyio_backend():
    """Run coroutine tests on asyncio only (the engine uses asyncio tasks)."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch):
    """Keep test runs from writing log files under the home directory."""
    monkeypatch.setenv("GITSOURCE_LOG_DISABLE_FILE", "1")
    monkeypatch.delenv("GITSOURCE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("GITSOURCE_LOG_DIR", raising=False)
    from gitsource import observability

    observability._logger_initialized = False
    yield
    observability._logger_initialized = False


ACTOR = Actor("Tester", "tester@example.com")


class RemoteRepo:
    """A bare remote plus the seed checkout used to push commits into it."""

    def __init__(self, root: Path, branch: str = "master") -> None:
        self.branch = branch
        self.bare_path = root / "remote.git"
        self.bare_path.mkdir(parents=True)
        bare = Repo.init(self.bare_path, bare=True)
        bare.git.symbolic_ref("HEAD", f"refs/heads/{branch}")

        self.workdir = root / "seed"
        self.repo = Repo.init(self.workdir)
        self.commits: List[str] = []
        self._ts = 1_700_000_000

    @property
    def url(self) -> str:
        return self.bare_path.as_posix()

    def commit(self, files: Dict[str, Optional[str]], message: Optional[str] = None) -> str:
        """Write (or delete, for None) files, commit them and push.

        Returns the new commit sha.
        """
        for path, content in files.items():
            target = self.workdir / path
            if content is None:
                self.repo.index.remove([path], working_tree=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
                self.repo.index.add([path])

        self._ts += 60
        date = f"{self._ts} +0000"
        commit = self.repo.index.commit(
            message or f"commit {len(self.commits) + 1}",
            author=ACTOR,
            committer=ACTOR,
            author_date=date,
            commit_date=date,
        )
        if not self.commits:
            self.repo.git.branch("-M", self.branch)
            self.repo.create_remote("origin", self.url)
        self.commits.append(commit.hexsha)
        self.repo.remotes.origin.push(f"{self.branch}:{self.branch}")
        return commit.hexsha


@pytest.fixture
def remote_repo(tmp_path: Path) -> RemoteRepo:
    return RemoteRepo(tmp_path / "upstream")


class FakeObserver:
    """Stands in for a watchdog observer; live events are injected by tests."""

    def __init__(self) -> None:
        self.handler = None
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout=None) -> None:
        pass


@pytest.fixture
def observer_factory():
    return FakeObserver
