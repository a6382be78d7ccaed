#!/usr/bin/env python3
"""gitsource CLI - index a git repository into a content graph and keep it in sync."""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"gitsource requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _add_source_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Config file (default: discover .gitsource/config.toml)")
    p.add_argument("--name", help="Source instance name (also names the cache directory)")
    p.add_argument("--remote", help="Remote repository URL")
    p.add_argument("--branch", help="Primary branch (default: master)")
    p.add_argument("--remote-name", help="Remote to merge from (default: origin)")
    p.add_argument("--cache-dir", help="Directory holding working trees")
    p.add_argument("--insecure", action="store_true", help="Skip TLS certificate verification")
    p.add_argument("--export", help="Write a JSONL snapshot to this directory when done")


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    source: Dict[str, Any] = {}
    for key, attr in (
        ("name", "name"),
        ("remote", "remote"),
        ("branch", "branch"),
        ("remote_name", "remote_name"),
        ("cache_dir", "cache_dir"),
    ):
        value = getattr(args, attr, None)
        if value is not None:
            source[key] = value
    if getattr(args, "pattern", None):
        source["patterns"] = args.pattern
    if getattr(args, "ignore", None):
        source["ignore"] = args.ignore
    if args.insecure:
        source["verify_certificates"] = False
    return {"source": source} if source else {}


def _load(args: argparse.Namespace):
    from .config_loader import load_config, require_source
    from .observability import configure_logging

    config = load_config(
        config_file=Path(args.config) if args.config else None,
        overrides=_overrides(args),
    )
    configure_logging(
        level=config.logging.level,
        log_dir=config.logging.dir or None,
        disable_file=config.logging.disable_file,
    )
    return require_source(config)


async def _run_sync(source, export_dir: str | None) -> None:
    from .export import export_graph
    from .graph import InMemoryGraphSink
    from .sync import synchronize

    sink = InMemoryGraphSink(namespace=source.name)
    session = await synchronize(source, sink)
    # Nothing else bootstraps in standalone mode
    session.bootstrap_finished()
    print(f"Watching {session.local_path} ({len(sink.nodes)} nodes). Press Ctrl-C to stop.")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: fall back to KeyboardInterrupt
            pass
    try:
        await stop.wait()
    finally:
        await session.close()
        if export_dir:
            manifest = export_graph(sink.nodes.values(), Path(export_dir), source=source.remote)
            print(f"Exported {manifest['nodes_written']} nodes to {export_dir}")


def _run_index(source, export_dir: str | None) -> None:
    from .errors import RepositoryUnreachable
    from .export import export_commit_index, export_graph
    from .graph import InMemoryGraphSink
    from .history import CommitHistoryIndexer
    from .remote import build_remote_descriptor
    from .repo_sync import RepositorySync

    sink = InMemoryGraphSink(namespace=source.name)
    try:
        remote = build_remote_descriptor(source.name, source.remote, sink)
    except ValueError as e:
        raise RepositoryUnreachable(str(e)) from e
    syncer = RepositorySync(
        branch=source.branch,
        remote_name=source.remote_name,
        verify_certificates=source.verify_certificates,
    )
    handle = syncer.sync(source.remote, source.local_path())
    result = CommitHistoryIndexer(remote.id, sink, branch=source.branch).index(handle)

    print(f"{source.name}: {len(result.records)} commits, {len(result.index)} paths (tip {result.tip})")
    if export_dir:
        out = Path(export_dir)
        export_graph([remote, *result.records], out, source=source.remote)
        export_commit_index(result.index, out)
        print(f"Exported commit index to {out}")


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="gitsource",
        description="Source a git repository's history and working tree into a content graph",
    )
    sub = ap.add_subparsers(dest="cmd")

    p_sync = sub.add_parser("sync", help="Index history, then watch the working tree until interrupted")
    _add_source_args(p_sync)
    p_sync.add_argument("--pattern", action="append", help="Glob of files to source (repeatable, default: **)")
    p_sync.add_argument("--ignore", action="append", help="Extra glob to ignore (repeatable)")

    p_index = sub.add_parser("index", help="Sync the working tree and index its history only")
    _add_source_args(p_index)

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(1)

    from .errors import GitSourceError

    try:
        source = _load(args)
        if args.cmd == "sync":
            try:
                asyncio.run(_run_sync(source, args.export))
            except KeyboardInterrupt:
                pass
        elif args.cmd == "index":
            _run_index(source, args.export)
    except GitSourceError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
