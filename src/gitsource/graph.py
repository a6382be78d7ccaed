"""Content-graph contracts and the default in-process implementations.

The sync engine only talks to the graph through ``ContentGraphSink`` and to
the filesystem through ``ContentFileBuilder``. ``InMemoryGraphSink`` and
``LocalFileBuilder`` satisfy both for the CLI and for tests.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import mimetypes
import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

FILE_NODE_TYPE = "File"
DIRECTORY_NODE_TYPE = "Directory"


@runtime_checkable
class GraphNode(Protocol):
    id: str
    node_type: str


@runtime_checkable
class ContentGraphSink(Protocol):
    """System of record for content nodes."""

    async def create(self, node: GraphNode) -> None:
        """Create or replace a node (keyed by ``node.id``)."""
        ...

    def delete(self, node: GraphNode) -> None:
        ...

    def lookup(self, node_id: str) -> Optional[GraphNode]:
        ...

    def allocate_id(self, seed: str) -> str:
        """Deterministic identifier for ``seed``."""
        ...

    def digest(self, value: Any) -> str:
        ...


@dataclass
class FileContentNode:
    """A file or directory under the working tree.

    Attributes:
        id: Identifier allocated from the absolute path
        absolute_path: Absolute POSIX path
        relative_path: Path relative to the working tree root (matches CommitIndex keys)
        kind: "file" or "directory"
        remote_id: GitRemote node this file belongs to (set by the sync engine)
        commit_ids: Commits whose snapshot contains this path, most recent first,
            None when the path has no recorded history
    """
    id: str
    absolute_path: str
    relative_path: str
    relative_directory: str
    base: str
    name: str
    extension: str
    kind: str
    size: int
    modified_time: str
    changed_time: str
    source_instance_name: str
    content_digest: str
    media_type: Optional[str] = None
    remote_id: Optional[str] = None
    commit_ids: Optional[List[str]] = None

    @property
    def node_type(self) -> str:
        return DIRECTORY_NODE_TYPE if self.kind == "directory" else FILE_NODE_TYPE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.node_type
        return data


@runtime_checkable
class ContentFileBuilder(Protocol):
    async def build(self, path: str, name_hint: str, root_hint: str) -> FileContentNode:
        """Build the node for ``path``.

        Raises:
            OSError: If the path vanished or cannot be read
        """
        ...


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


def _iso_from_epoch(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


class InMemoryGraphSink:
    """Dict-backed sink.

    Node ids are UUIDv5 values derived from the seed within ``namespace``, so the
    same path always maps to the same id.
    """

    def __init__(self, namespace: str = "gitsource") -> None:
        self._namespace = uuid.uuid5(uuid.NAMESPACE_URL, f"gitsource:{namespace}")
        self.nodes: Dict[str, Any] = {}
        self.created: List[str] = []
        self.deleted: List[str] = []

    async def create(self, node: Any) -> None:
        self.nodes[node.id] = node
        self.created.append(node.id)

    def delete(self, node: Any) -> None:
        self.nodes.pop(node.id, None)
        self.deleted.append(node.id)

    def lookup(self, node_id: str) -> Optional[Any]:
        return self.nodes.get(node_id)

    def allocate_id(self, seed: str) -> str:
        return str(uuid.uuid5(self._namespace, seed))

    def digest(self, value: Any) -> str:
        serialized = json.dumps(
            _to_jsonable(value), sort_keys=True, separators=(",", ":"), default=str
        )
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()

    def nodes_of_type(self, node_type: str) -> List[Any]:
        return [n for n in self.nodes.values() if n.node_type == node_type]


def _file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


class LocalFileBuilder:
    """Builds ``FileContentNode`` values from the local filesystem."""

    def __init__(self, sink: ContentGraphSink) -> None:
        self._sink = sink

    def _build_sync(self, path: str, name_hint: str, root_hint: str) -> FileContentNode:
        p = Path(path)
        root = Path(root_hint)
        st = p.stat()
        is_dir = p.is_dir()
        try:
            relative = p.relative_to(root).as_posix()
        except ValueError:
            relative = p.name
        relative_dir = Path(relative).parent.as_posix()
        if relative_dir == ".":
            relative_dir = ""

        if is_dir:
            digest = self._sink.digest({"path": p.as_posix(), "mtime": st.st_mtime})
        else:
            digest = _file_digest(p)

        return FileContentNode(
            id=self._sink.allocate_id(p.as_posix()),
            absolute_path=p.as_posix(),
            relative_path=relative,
            relative_directory=relative_dir,
            base=p.name,
            name=p.stem if not is_dir else p.name,
            extension=p.suffix.lstrip(".") if not is_dir else "",
            kind="directory" if is_dir else "file",
            size=0 if is_dir else st.st_size,
            modified_time=_iso_from_epoch(st.st_mtime),
            changed_time=_iso_from_epoch(st.st_ctime),
            source_instance_name=name_hint,
            content_digest=digest,
            media_type=None if is_dir else mimetypes.guess_type(p.name)[0],
        )

    async def build(self, path: str, name_hint: str, root_hint: str) -> FileContentNode:
        return await asyncio.to_thread(self._build_sync, path, name_hint, root_hint)
