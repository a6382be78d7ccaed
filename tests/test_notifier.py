from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from gitsource.notifier import (
    ADD,
    ADD_DIR,
    CHANGE,
    READY,
    UNLINK,
    FileSystemNotifier,
    NotifierEvent,
    PathFilter,
)


@pytest.mark.parametrize(
    "relative",
    [
        ".git",
        ".git/HEAD",
        "node_modules/pkg/index.js",
        "src/node_modules/x.js",
        "notes.txt.un~",
        "docs/.DS_Store",
        ".gitignore",
        "yarn.lock",
        "dist/bundle.js",
        "web/bower_components/lib.js",
    ],
)
def test_builtin_ignores(relative):
    assert PathFilter().is_ignored(relative)


@pytest.mark.parametrize("relative", ["README.md", "src/app.py", "docs/distance.md", "gitignore.md"])
def test_regular_paths_not_ignored(relative):
    assert not PathFilter().is_ignored(relative)


def test_extra_ignore_globs_apply_to_descendants():
    f = PathFilter(ignore=["build", "*.tmp"])
    assert f.is_ignored("build")
    assert f.is_ignored("build/out/a.js")
    assert f.is_ignored("scratch.tmp")
    assert not f.is_ignored("src/builder.py")


def test_patterns_select_files_only():
    f = PathFilter(patterns=["*.md", "**/*.md"])
    assert f.accepts("README.md", is_directory=False)
    assert f.accepts("docs/guide.md", is_directory=False)
    assert not f.accepts("src/app.py", is_directory=False)
    # Directories are always reported so their contents can be
    assert f.accepts("src", is_directory=True)


def test_single_star_does_not_cross_directories():
    f = PathFilter(patterns=["*.md"])
    assert f.is_selected("README.md")
    assert not f.is_selected("docs/b.md")


def test_double_star_in_the_middle_matches_zero_or_more_dirs():
    f = PathFilter(patterns=["docs/**/*.md"])
    assert f.is_selected("docs/a.md")
    assert f.is_selected("docs/guide/deep/a.md")
    assert not f.is_selected("blog/a.md")
    assert not f.is_selected("docs/a.txt")


def test_leading_double_star_matches_at_any_depth():
    f = PathFilter(patterns=["**/*.md"])
    assert f.is_selected("README.md")
    assert f.is_selected("docs/guide/a.md")


def test_slashed_ignore_glob_stays_in_its_directory():
    f = PathFilter(ignore=["src/*.js"])
    assert f.is_ignored("src/app.js")
    assert not f.is_ignored("src/lib/deep.js")
    assert not f.is_ignored("app.js")


def _collect(tree: Path, observer_factory, **kwargs):
    notifier = FileSystemNotifier(tree, observer_factory=observer_factory, **kwargs)
    events: List[NotifierEvent] = []
    return notifier, events


async def _until_ready(events: List[NotifierEvent]) -> None:
    for _ in range(200):
        if any(e.type == READY for e in events):
            return
        await asyncio.sleep(0.01)
    raise AssertionError("notifier never became ready")


@pytest.mark.anyio
async def test_initial_scan_reports_tree_then_ready(tmp_path, observer_factory):
    tree = tmp_path / "tree"
    (tree / "docs").mkdir(parents=True)
    (tree / "docs" / "a.md").write_text("a")
    (tree / "b.txt").write_text("b")
    (tree / ".git").mkdir()
    (tree / ".git" / "HEAD").write_text("ref")
    (tree / "node_modules" / "x").mkdir(parents=True)

    notifier, events = _collect(tree, observer_factory)
    notifier.start(events.append)
    await _until_ready(events)
    await notifier.stop()

    root = tree.resolve()
    assert events[-1] == NotifierEvent(READY)
    assert set(events[:-1]) == {
        NotifierEvent(ADD_DIR, (root / "docs").as_posix()),
        NotifierEvent(ADD, (root / "docs" / "a.md").as_posix()),
        NotifierEvent(ADD, (root / "b.txt").as_posix()),
    }
    assert [e.type for e in events].count(READY) == 1


@pytest.mark.anyio
async def test_initial_scan_honors_patterns(tmp_path, observer_factory):
    tree = tmp_path / "tree"
    tree.mkdir()
    (tree / "keep.md").write_text("k")
    (tree / "skip.py").write_text("s")

    notifier, events = _collect(tree, observer_factory, patterns=["**/*.md"])
    notifier.start(events.append)
    await _until_ready(events)
    await notifier.stop()

    paths = [Path(e.path).name for e in events if e.type == ADD]
    assert paths == ["keep.md"]


@pytest.mark.anyio
async def test_live_events_are_translated(tmp_path, observer_factory):
    tree = tmp_path / "tree"
    tree.mkdir()
    notifier, events = _collect(tree, observer_factory)
    notifier.start(events.append)
    await _until_ready(events)
    events.clear()

    root = tree.resolve()
    handler = notifier._observer.handler
    handler.on_created(FileCreatedEvent(str(root / "new.md")))
    handler.on_created(DirCreatedEvent(str(root / "sub")))
    handler.on_modified(FileModifiedEvent(str(root / "new.md")))
    handler.on_deleted(FileDeletedEvent(str(root / "old.md")))
    handler.on_moved(FileMovedEvent(str(root / "new.md"), str(root / "renamed.md")))
    handler.on_created(FileCreatedEvent(str(root / ".git" / "index")))
    handler.on_created(FileCreatedEvent(str(tmp_path / "outside.md")))
    await asyncio.sleep(0.05)

    assert events == [
        NotifierEvent(ADD, (root / "new.md").as_posix()),
        NotifierEvent(ADD_DIR, (root / "sub").as_posix()),
        NotifierEvent(CHANGE, (root / "new.md").as_posix()),
        NotifierEvent(UNLINK, (root / "old.md").as_posix()),
        NotifierEvent(UNLINK, (root / "new.md").as_posix()),
        NotifierEvent(ADD, (root / "renamed.md").as_posix()),
    ]

    observer = notifier._observer
    await notifier.stop()
    assert observer.started and observer.stopped


@pytest.mark.anyio
async def test_no_events_after_stop(tmp_path, observer_factory):
    tree = tmp_path / "tree"
    tree.mkdir()
    notifier, events = _collect(tree, observer_factory)
    notifier.start(events.append)
    await _until_ready(events)
    handler = notifier._observer.handler
    await notifier.stop()
    events.clear()

    handler.on_created(FileCreatedEvent(str(tree.resolve() / "late.md")))
    await asyncio.sleep(0.02)

    assert events == []
