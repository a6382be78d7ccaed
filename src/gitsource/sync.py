"""Sourcing entry point.

``synchronize()`` runs the whole pipeline for one source:

1. Sync the working tree (clone, or fetch + merge)
2. Walk history into a CommitIndex and push GitRemote/GitCommit nodes
3. Start the watcher and the watch state machine
4. Return once the initial flush has settled

The returned ``SourceSession`` keeps applying filesystem changes to the sink
until ``close()`` is awaited.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from .config_schema import SourceConfig
from .errors import GitSourceError, RepositoryUnreachable
from .graph import ContentFileBuilder, ContentGraphSink, LocalFileBuilder
from .history import CommitHistoryIndexer, HistoryResult
from .machine import (
    BootstrapFinished,
    PathAdded,
    PathChanged,
    PathKind,
    PathRemoved,
    WatchReady,
    WatchStateMachine,
)
from .notifier import (
    ADD,
    ADD_DIR,
    CHANGE,
    ERROR,
    READY,
    UNLINK,
    UNLINK_DIR,
    FileSystemNotifier,
    NotifierEvent,
)
from .observability import log_action, log_debug
from .remote import RemoteDescriptor, build_remote_descriptor
from .repo_sync import RepositorySync, WorkingTreeHandle


class SourceSession:
    """One synchronization session between a repository and a graph sink.

    Args:
        config: Source settings
        sink: Content-graph sink
        builder: File node builder (default: ``LocalFileBuilder``)
        notifier: Filesystem notifier (default: watchdog-backed, over the working tree)
        repository_sync: Working tree manager (default: built from ``config``)
    """

    def __init__(
        self,
        config: SourceConfig,
        sink: ContentGraphSink,
        *,
        builder: Optional[ContentFileBuilder] = None,
        notifier: Optional[FileSystemNotifier] = None,
        repository_sync: Optional[RepositorySync] = None,
    ) -> None:
        self.config = config
        self.sink = sink
        self.local_path: Path = config.local_path()
        self.builder = builder or LocalFileBuilder(sink)
        self.notifier = notifier or FileSystemNotifier(
            self.local_path,
            ignore=config.ignore,
            patterns=config.patterns,
        )
        self.repository_sync = repository_sync or RepositorySync(
            branch=config.branch,
            remote_name=config.remote_name,
            verify_certificates=config.verify_certificates,
        )
        self.remote: Optional[RemoteDescriptor] = None
        self.handle: Optional[WorkingTreeHandle] = None
        self.history: Optional[HistoryResult] = None
        self.machine: Optional[WatchStateMachine] = None
        self._ready: Optional[asyncio.Future] = None
        self._closed = False

    async def start(self) -> None:
        """Index history, start watching, and wait for the initial flush.

        Raises:
            RepositoryUnreachable: Remote URL malformed, or clone/fetch failed
            MergeFailed: Remote branch could not be merged
            HistoryWalkFailed: History could not be read
            FlushFailed: A queued mutation failed during the initial flush
        """
        config = self.config
        try:
            self.remote = build_remote_descriptor(config.name, config.remote, self.sink)
        except ValueError as e:
            raise RepositoryUnreachable(str(e)) from e

        self.handle = await asyncio.to_thread(
            self.repository_sync.sync, config.remote, self.local_path
        )
        await self.sink.create(self.remote)

        indexer = CommitHistoryIndexer(self.remote.id, self.sink, branch=config.branch)
        self.history = await asyncio.to_thread(indexer.index, self.handle)
        for record in self.history.records:
            await self.sink.create(record)

        # The index is complete; only now may file nodes be touched
        self.machine = WatchStateMachine(
            sink=self.sink,
            builder=self.builder,
            name=config.name,
            root=self.notifier.root,
            remote_id=self.remote.id,
            commit_index=self.history.index,
        )
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self.notifier.start(self._on_notifier_event)

        try:
            await self._ready
        except BaseException:
            await self.close()
            raise

        log_action(
            "source.ready",
            name=config.name,
            commits=len(self.history.records),
            paths=len(self.history.index),
        )

    def _resolve_ready(self) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(None)

    def _reject_ready(self, error: BaseException) -> None:
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)

    def _on_notifier_event(self, event: NotifierEvent) -> None:
        if self._closed or self.machine is None:
            return
        if event.type == ADD:
            self.machine.send(PathAdded(event.path, PathKind.FILE))
        elif event.type == CHANGE:
            self.machine.send(PathChanged(event.path, PathKind.FILE))
        elif event.type == UNLINK:
            self.machine.send(PathRemoved(event.path, PathKind.FILE))
        elif event.type == ADD_DIR:
            self.machine.send(PathAdded(event.path, PathKind.DIRECTORY))
        elif event.type == UNLINK_DIR:
            self.machine.send(PathRemoved(event.path, PathKind.DIRECTORY))
        elif event.type == READY:
            self.machine.send(WatchReady(on_complete=self._resolve_ready, on_failure=self._reject_ready))
        elif event.type == ERROR:
            self._reject_ready(GitSourceError(f"Watcher failed: {event.path}"))
        else:
            self.machine.send(event)

    def bootstrap_finished(self) -> None:
        """Deliver the host's bootstrap-finished signal."""
        if self.machine is not None:
            self.machine.send(BootstrapFinished())

    async def drain(self) -> None:
        """Wait for in-flight mutations to settle."""
        if self.machine is not None:
            await self.machine.drain()

    async def close(self) -> None:
        """Stop watching and let in-flight mutations finish."""
        if self._closed:
            return
        self._closed = True
        await self.notifier.stop()
        await self.drain()
        log_debug("source session closed", name=self.config.name)


async def synchronize(
    config: SourceConfig,
    sink: ContentGraphSink,
    *,
    builder: Optional[ContentFileBuilder] = None,
    notifier: Optional[FileSystemNotifier] = None,
) -> SourceSession:
    """Index ``config.remote`` into ``sink`` and keep it in sync.

    Returns once the initial flush completed; the session keeps running until
    ``await session.close()``.
    """
    session = SourceSession(config, sink, builder=builder, notifier=notifier)
    await session.start()
    return session
