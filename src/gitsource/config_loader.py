"""Configuration loading and merging for gitsource.

Settings are layered, later layers winning:

1. Built-in defaults (``config_schema``)
2. User config, ``~/.gitsource/config.toml``
3. Project config, the nearest ``.gitsource/config.toml`` at or above the
   project path, or an explicit ``config_file`` instead
4. ``GITSOURCE_*`` environment variables
5. Overrides passed by the caller (CLI flags)
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

# TOML loading: tomllib (3.11+) with tomli fallback
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import GitSourceConfig, SourceConfig
from .errors import ConfigError


CONFIG_DIRNAME = ".gitsource"
CONFIG_FILENAME = "config.toml"

# Environment variable -> (table, key)
ENV_MAPPING: Dict[str, Tuple[str, str]] = {
    "GITSOURCE_NAME": ("source", "name"),
    "GITSOURCE_REMOTE": ("source", "remote"),
    "GITSOURCE_PATTERNS": ("source", "patterns"),
    "GITSOURCE_IGNORE": ("source", "ignore"),
    "GITSOURCE_BRANCH": ("source", "branch"),
    "GITSOURCE_REMOTE_NAME": ("source", "remote_name"),
    "GITSOURCE_VERIFY_CERTIFICATES": ("source", "verify_certificates"),
    "GITSOURCE_CACHE_DIR": ("source", "cache_dir"),
    "GITSOURCE_LOG_LEVEL": ("logging", "level"),
    "GITSOURCE_LOG_DIR": ("logging", "dir"),
    "GITSOURCE_LOG_DISABLE_FILE": ("logging", "disable_file"),
}


def user_config_path() -> Path:
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def find_project_config(start: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.gitsource/config.toml`` at or above ``start`` (default: cwd)."""
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / CONFIG_DIRNAME / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _config_files(config_file: Optional[Path], project_path: Optional[Path]) -> List[Path]:
    files: List[Path] = []
    user = user_config_path()
    if user.is_file():
        files.append(user)
    if config_file is not None:
        # Explicit files must exist; discovered ones are optional
        files.append(config_file)
    else:
        project = find_project_config(project_path)
        if project is not None and project != user:
            files.append(project)
    return files


def _read_toml(path: Path) -> Dict[str, Any]:
    """Parse one TOML file.

    Raises:
        ConfigError: If the file is missing or is not valid TOML
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _merge(base: Dict[str, Any], layer: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``layer`` over ``base``; tables merge recursively, everything else is replaced."""
    merged = dict(base)
    for key, value in layer.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _env_layer() -> Dict[str, Any]:
    layer: Dict[str, Dict[str, str]] = {}
    for env_var, (table, key) in ENV_MAPPING.items():
        value = os.getenv(env_var)
        if value is not None:
            # Pydantic coerces the strings ("false", "a,b") during validation
            layer.setdefault(table, {})[key] = value
    return layer


def _layers(
    config_file: Optional[Path],
    project_path: Optional[Path],
    overrides: Optional[Dict[str, Any]],
    skip_env: bool,
) -> Iterator[Dict[str, Any]]:
    for path in _config_files(config_file, project_path):
        yield _read_toml(path)
    if not skip_env:
        yield _env_layer()
    if overrides:
        yield overrides


def load_config(
    config_file: Optional[Path] = None,
    project_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    skip_env: bool = False,
) -> GitSourceConfig:
    """Load and validate the layered gitsource configuration.

    Raises:
        ConfigError: If a config file is unreadable or the merged result is invalid
    """
    merged: Dict[str, Any] = {}
    for layer in _layers(config_file, project_path, overrides, skip_env):
        merged = _merge(merged, layer)

    try:
        return GitSourceConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def require_source(config: GitSourceConfig) -> SourceConfig:
    """Return the [source] table, failing when name/remote were never given."""
    if config.source is None:
        raise ConfigError(
            "No source configured: pass --name and --remote or add a [source] table"
        )
    return config.source
