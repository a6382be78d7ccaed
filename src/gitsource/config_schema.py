"""Configuration schema for gitsource.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Union

from pydantic import BaseModel, Field, field_validator


DEFAULT_CACHE_DIR = Path(".cache") / "caches" / "gitsource"


class SourceConfig(BaseModel):
    """Settings for one sourcing session."""

    name: str = Field(
        min_length=1,
        description="Identity of this sourcing session and local-path namespace",
    )
    remote: str = Field(
        min_length=1,
        description="URL of the remote repository",
    )
    patterns: List[str] = Field(
        default_factory=lambda: ["**"],
        description="Globs selecting which files are sourced (relative to the working tree)",
    )
    ignore: List[str] = Field(
        default_factory=list,
        description="Extra globs ignored by the watcher, merged with the built-in set",
    )
    branch: str = Field(
        default="master",
        min_length=1,
        description="Local primary branch to index and merge into",
    )
    remote_name: str = Field(
        default="origin",
        min_length=1,
        description="Remote whose tracking branch is merged into the primary branch",
    )
    verify_certificates: bool = Field(
        default=True,
        description="Verify TLS certificates on clone and fetch",
    )
    cache_dir: str = Field(
        default="",
        description="Directory holding working trees (empty = ./.cache/caches/gitsource)",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names become a directory under the cache root."""
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"name must be a single path segment: {v!r}")
        return v

    @field_validator("patterns", "ignore", mode="before")
    @classmethod
    def split_globs(cls, v: Union[str, List[str], None]) -> List[str]:
        """Accept a comma-separated string (env vars, CLI) as a glob list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("patterns")
    @classmethod
    def default_patterns(cls, v: List[str]) -> List[str]:
        return v or ["**"]

    def cache_root(self) -> Path:
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return Path.cwd() / DEFAULT_CACHE_DIR

    def local_path(self) -> Path:
        """Working tree location for this session."""
        return self.cache_root() / self.name


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.gitsource/logs/)",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class GitSourceConfig(BaseModel):
    """Root configuration: an optional source table plus logging."""

    source: SourceConfig | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
