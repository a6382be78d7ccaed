"""Filesystem notifications for a working tree.

Reports ``add``/``addDir`` for everything already present (the initial scan),
then ``ready``, then live ``add``/``change``/``unlink``/``addDir``/``unlinkDir``
events from a watchdog observer. Events are handed to the asyncio loop with
``call_soon_threadsafe`` so consumers only ever run on the loop thread.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

import pathspec
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .observability import log_debug, log_warning

ADD = "add"
CHANGE = "change"
UNLINK = "unlink"
ADD_DIR = "addDir"
UNLINK_DIR = "unlinkDir"
READY = "ready"
ERROR = "error"

# VCS, editor and package-manager artifacts plus build output.
# gitignore syntax: a pattern without a slash matches at any depth.
BUILTIN_IGNORE: tuple[str, ...] = (
    ".git",
    "*.un~",
    ".DS_Store",
    ".gitignore",
    ".npmignore",
    ".babelrc",
    "yarn.lock",
    "bower_components",
    "node_modules",
    "dist",
)


@dataclass(frozen=True)
class NotifierEvent:
    type: str
    path: Optional[str] = None


def _anchor(pattern: str) -> str:
    """Root a slash-free selection glob so ``*.md`` means top-level files only."""
    if pattern.startswith(("/", "**")) or "/" in pattern.rstrip("/"):
        return pattern
    return "/" + pattern


class PathFilter:
    """Decides which paths under the root are reported.

    Both lists are gitwildmatch globs relative to the root: ``*`` stops at
    ``/`` and ``**`` spans directories. A path is ignored when it, or any
    directory above it, matches an ignore glob (slash-free ignore globs match
    at any depth, as in ``.gitignore``). Files must also match at least one of
    ``patterns``, which are anchored at the root.
    """

    def __init__(self, ignore: Iterable[str] = (), patterns: Sequence[str] = ("**",)) -> None:
        self.ignore = list(BUILTIN_IGNORE) + [p for p in ignore if p]
        self.patterns = [p for p in patterns if p] or ["**"]
        self._ignore_spec = pathspec.PathSpec.from_lines("gitwildmatch", self.ignore)
        self._select_spec = pathspec.PathSpec.from_lines(
            "gitwildmatch", [_anchor(p) for p in self.patterns]
        )

    def is_ignored(self, relative: str) -> bool:
        parts = relative.split("/")
        for i in range(1, len(parts) + 1):
            if self._ignore_spec.match_file("/".join(parts[:i])):
                return True
        return False

    def is_selected(self, relative: str) -> bool:
        return self._select_spec.match_file(relative)

    def accepts(self, relative: str, is_directory: bool) -> bool:
        if self.is_ignored(relative):
            return False
        return is_directory or self.is_selected(relative)


class _WatchHandler(FileSystemEventHandler):
    """Translates watchdog events into notifier events."""

    def __init__(self, notifier: "FileSystemNotifier") -> None:
        super().__init__()
        self._notifier = notifier

    def on_created(self, event: FileSystemEvent) -> None:
        self._notifier._report(ADD_DIR if event.is_directory else ADD, event.src_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._notifier._report(CHANGE, event.src_path, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._notifier._report(UNLINK_DIR if event.is_directory else UNLINK, event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._notifier._report(UNLINK_DIR if event.is_directory else UNLINK, event.src_path, event.is_directory)
        self._notifier._report(ADD_DIR if event.is_directory else ADD, event.dest_path, event.is_directory)


class FileSystemNotifier:
    """Watches ``root`` and reports events to a single callback.

    Args:
        root: Directory to watch
        ignore: Extra ignore globs, merged with ``BUILTIN_IGNORE``
        patterns: Globs selecting which files are reported
        observer_factory: Builds the watchdog observer (tests pass a polling one)
    """

    def __init__(
        self,
        root: Path | str,
        *,
        ignore: Iterable[str] = (),
        patterns: Sequence[str] = ("**",),
        observer_factory: Callable[[], object] = Observer,
    ) -> None:
        self.root = Path(root).resolve()
        self.filter = PathFilter(ignore, patterns)
        self._observer_factory = observer_factory
        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._emit: Optional[Callable[[NotifierEvent], None]] = None
        self._scan_task: Optional[asyncio.Future] = None

    def _relative(self, path: str | bytes) -> Optional[str]:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        try:
            relative = Path(path).relative_to(self.root).as_posix()
        except ValueError:
            return None
        return None if relative == "." else relative

    def _post(self, event: NotifierEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed() or self._emit is None:
            return
        loop.call_soon_threadsafe(self._emit, event)

    def _report(self, kind: str, path: str | bytes, is_directory: bool) -> None:
        relative = self._relative(path)
        if relative is None or not self.filter.accepts(relative, is_directory):
            return
        self._post(NotifierEvent(kind, (self.root / relative).as_posix()))

    def _initial_scan(self) -> None:
        for dirpath, dirnames, filenames in os.walk(self.root):
            base = Path(dirpath)
            kept = []
            for dirname in sorted(dirnames):
                relative = (base / dirname).relative_to(self.root).as_posix()
                if self.filter.is_ignored(relative):
                    continue
                kept.append(dirname)
                self._post(NotifierEvent(ADD_DIR, (self.root / relative).as_posix()))
            # Prune in place so os.walk skips ignored trees
            dirnames[:] = kept
            for filename in sorted(filenames):
                relative = (base / filename).relative_to(self.root).as_posix()
                if self.filter.accepts(relative, False):
                    self._post(NotifierEvent(ADD, (self.root / relative).as_posix()))
        self._post(NotifierEvent(READY))

    def start(self, emit: Callable[[NotifierEvent], None]) -> None:
        """Start watching. Must be called from the event loop thread."""
        self._loop = asyncio.get_running_loop()
        self._emit = emit
        observer = self._observer_factory()
        observer.schedule(_WatchHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        log_debug("watching working tree", root=str(self.root))
        self._scan_task = asyncio.ensure_future(asyncio.to_thread(self._initial_scan))
        self._scan_task.add_done_callback(self._scan_done)

    def _scan_done(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log_warning(f"initial scan failed: {error}")
            if self._emit is not None:
                self._emit(NotifierEvent(ERROR, str(error)))

    async def stop(self) -> None:
        self._emit = None
        if self._scan_task is not None and not self._scan_task.done():
            await asyncio.wait([self._scan_task])
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
