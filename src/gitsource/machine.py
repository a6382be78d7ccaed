"""Watch state machine.

Two orthogonal regions share one dispatch method:

- Bootstrap: BOOTSTRAPPING -> BOOTSTRAPPED. Only decides whether actions log.
- Watch: NOT_READY -> READY. Before the watcher's initial scan completes,
  path events are queued; leaving NOT_READY flushes the queue into graph
  mutations. In READY every event is applied as it arrives.

``send()`` runs on the event loop thread and never awaits, so one event is fully
dispatched before the next. Mutations run as tasks; tasks touching the same
path are chained in arrival order, tasks on different paths run concurrently.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .errors import FlushFailed, NodeBuildFailed
from .graph import ContentFileBuilder, ContentGraphSink
from .history import CommitIndex
from .observability import log_debug, log_error, log_info
from .pending import OpKind, PendingOp, PendingOpQueue


class BootstrapState(str, Enum):
    BOOTSTRAPPING = "BOOTSTRAPPING"
    BOOTSTRAPPED = "BOOTSTRAPPED"


class WatchState(str, Enum):
    NOT_READY = "NOT_READY"
    READY = "READY"


class PathKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class BootstrapFinished:
    """The host finished its bootstrap phase."""


@dataclass(frozen=True)
class PathAdded:
    path: str
    kind: PathKind = PathKind.FILE


@dataclass(frozen=True)
class PathChanged:
    path: str
    kind: PathKind = PathKind.FILE


@dataclass(frozen=True)
class PathRemoved:
    path: str
    kind: PathKind = PathKind.FILE


@dataclass(frozen=True)
class WatchReady:
    """The watcher finished its initial scan.

    ``on_complete`` runs once every queued mutation has settled,
    ``on_failure`` receives a ``FlushFailed`` if any of them failed.
    """
    on_complete: Callable[[], None]
    on_failure: Callable[[BaseException], None]


class WatchStateMachine:
    """Coordinates bootstrap state, watcher readiness and graph mutations.

    Args:
        sink: Content-graph sink receiving node create/delete calls
        builder: Turns a path into a ``FileContentNode``
        name: Source instance name passed to the builder
        root: Working tree root passed to the builder
        remote_id: GitRemote node id linked from every file node
        commit_index: Fully built commit index for this session
    """

    def __init__(
        self,
        *,
        sink: ContentGraphSink,
        builder: ContentFileBuilder,
        name: str,
        root: Path | str,
        remote_id: str,
        commit_index: CommitIndex,
    ) -> None:
        self._sink = sink
        self._builder = builder
        self._name = name
        self._root = str(root)
        self._remote_id = remote_id
        self._commit_index = commit_index

        # Both regions start together
        self._bootstrap_state = BootstrapState.BOOTSTRAPPING
        self._watch_state = WatchState.NOT_READY

        self._queue = PendingOpQueue()
        self._tasks: Set[asyncio.Task] = set()
        self._path_tails: Dict[str, asyncio.Task] = {}

    @property
    def bootstrap_state(self) -> BootstrapState:
        return self._bootstrap_state

    @property
    def watch_state(self) -> WatchState:
        return self._watch_state

    @property
    def queue(self) -> PendingOpQueue:
        return self._queue

    def matches(self, state: Enum) -> bool:
        """True if either region is currently in ``state``."""
        return state in (self._bootstrap_state, self._watch_state)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(self, event: Any) -> None:
        """Dispatch one event to both regions."""
        if isinstance(event, BootstrapFinished):
            self._on_bootstrap_finished()
        elif isinstance(event, WatchReady):
            self._on_watch_ready(event)
        elif isinstance(event, (PathAdded, PathChanged, PathRemoved)):
            if self._watch_state is WatchState.NOT_READY:
                self._enqueue(event)
            else:
                self._apply(event)
        else:
            log_debug("ignoring unrecognized watch event", event=repr(event))

    def _on_bootstrap_finished(self) -> None:
        if self._bootstrap_state is BootstrapState.BOOTSTRAPPING:
            self._bootstrap_state = BootstrapState.BOOTSTRAPPED

    def _on_watch_ready(self, event: WatchReady) -> None:
        if self._watch_state is WatchState.READY:
            log_debug("watch already ready; ignoring repeated ready signal")
            return
        # Exit action of NOT_READY
        self._flush(event.on_complete, event.on_failure)
        self._watch_state = WatchState.READY

    def _enqueue(self, event: Any) -> None:
        if isinstance(event, PathRemoved):
            self._queue.enqueue(PendingOp.delete(event.path))
        else:
            self._queue.enqueue(PendingOp.upsert(event.path))

    def _apply(self, event: Any) -> None:
        if isinstance(event, PathRemoved):
            self._delete_now_or_after(event.path)
            verb = "deleted"
        else:
            task = self._schedule(event.path, lambda: self._upsert(event.path))
            task.add_done_callback(self._report_failure)
            verb = "added" if isinstance(event, PathAdded) else "changed"
        self._log(f"{verb} {event.kind.value} at {event.path}")

    def _log(self, message: str) -> None:
        if self._bootstrap_state is BootstrapState.BOOTSTRAPPED:
            log_info(message)

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    def _flush(
        self,
        on_complete: Callable[[], None],
        on_failure: Callable[[BaseException], None],
    ) -> None:
        ops = self._queue.flush()
        log_debug("flushing pending operations", count=len(ops))
        tasks = [self._schedule(op.path, self._mutation_for(op)) for op in ops]
        self._spawn(self._settle_flush(tasks, on_complete, on_failure))

    def _mutation_for(self, op: PendingOp) -> Callable[[], Awaitable[None]]:
        if op.kind is OpKind.DELETE:
            async def _delete() -> None:
                self._delete(op.path)
            return _delete
        return lambda: self._upsert(op.path)

    async def _settle_flush(
        self,
        tasks: List[asyncio.Task],
        on_complete: Callable[[], None],
        on_failure: Callable[[BaseException], None],
    ) -> None:
        results = await asyncio.gather(*tasks, return_exceptions=True)
        self._queue.close()
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for failure in failures:
                log_error(f"flush mutation failed: {failure}")
            on_failure(FlushFailed(failures))
        else:
            on_complete()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _upsert(self, path: str) -> None:
        try:
            node = await self._builder.build(path, self._name, self._root)
        except OSError as e:
            raise NodeBuildFailed(path, e) from e
        node.remote_id = self._remote_id
        node.commit_ids = self._commit_index.commits_for(node.relative_path)
        await self._sink.create(node)

    def _delete(self, path: str) -> None:
        node = self._sink.lookup(self._sink.allocate_id(path))
        # Editors write then immediately remove temp files; the node may never exist
        if node is not None:
            self._sink.delete(node)

    def _delete_now_or_after(self, path: str) -> None:
        pending = self._path_tails.get(path)
        if pending is None or pending.done():
            self._delete(path)
            return

        async def _delete() -> None:
            self._delete(path)

        self._schedule(path, _delete).add_done_callback(self._report_failure)

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule(self, path: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        previous = self._path_tails.get(path)
        if previous is not None and previous.done():
            previous = None
        task = self._spawn(self._run_after(previous, factory))
        self._path_tails[path] = task

        def _release(done: asyncio.Task) -> None:
            if self._path_tails.get(path) is done:
                del self._path_tails[path]

        task.add_done_callback(_release)
        return task

    @staticmethod
    async def _run_after(
        previous: Optional[asyncio.Task],
        factory: Callable[[], Awaitable[None]],
    ) -> None:
        if previous is not None:
            # Ordering only: the previous task's outcome is reported elsewhere
            await asyncio.wait([previous])
        await factory()

    @staticmethod
    def _report_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, NodeBuildFailed):
            log_error(str(error), path=error.path)
        else:
            log_error(f"mutation failed: {error}")

    async def drain(self) -> None:
        """Wait until every in-flight mutation (and the flush) has settled."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))
