"""Buffer of filesystem operations seen before the watcher is ready."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List

from .errors import QueueClosedError


class OpKind(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


class QueueState(str, Enum):
    OPEN = "open"
    FLUSHING = "flushing"
    CLOSED = "closed"


@dataclass(frozen=True)
class PendingOp:
    kind: OpKind
    path: str

    @classmethod
    def upsert(cls, path: str) -> "PendingOp":
        return cls(OpKind.UPSERT, path)

    @classmethod
    def delete(cls, path: str) -> "PendingOp":
        return cls(OpKind.DELETE, path)


class PendingOpQueue:
    """Append-only sequence of ops, drained exactly once.

    ``flush()`` hands back every op in enqueue order and moves the queue to
    FLUSHING; the owner calls ``close()`` once those ops have settled.
    Enqueueing after a flush, or flushing twice, raises ``QueueClosedError``.
    Ops are never coalesced: an upsert followed by a delete of the same path
    stays two ops.
    """

    def __init__(self) -> None:
        self._ops: List[PendingOp] = []
        self._state = QueueState.OPEN

    @property
    def state(self) -> QueueState:
        return self._state

    def __len__(self) -> int:
        return len(self._ops)

    def enqueue(self, op: PendingOp) -> None:
        if self._state is not QueueState.OPEN:
            raise QueueClosedError(f"Cannot enqueue {op.kind.value} {op.path}: queue is {self._state.value}")
        self._ops.append(op)

    def flush(self) -> List[PendingOp]:
        if self._state is not QueueState.OPEN:
            raise QueueClosedError(f"Queue already {self._state.value}; flush runs once")
        self._state = QueueState.FLUSHING
        ops, self._ops = self._ops, []
        return ops

    def close(self) -> None:
        """Mark the drained ops as settled."""
        self._state = QueueState.CLOSED
