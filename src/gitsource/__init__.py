"""gitsource: git history and live working-tree sourcing for content graphs."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("gitsource")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .errors import (  # noqa: F401
    FlushFailed,
    GitSourceError,
    HistoryWalkFailed,
    NodeBuildFailed,
    RepositoryUnreachable,
)
from .config_schema import SourceConfig  # noqa: F401
from .graph import InMemoryGraphSink, LocalFileBuilder  # noqa: F401
from .sync import SourceSession, synchronize  # noqa: F401

__all__ = [
    "FlushFailed",
    "GitSourceError",
    "HistoryWalkFailed",
    "NodeBuildFailed",
    "RepositoryUnreachable",
    "SourceConfig",
    "InMemoryGraphSink",
    "LocalFileBuilder",
    "SourceSession",
    "synchronize",
    "__version__",
]
