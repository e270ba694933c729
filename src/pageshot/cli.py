# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageShot CLI: serve, refresh, capture commands.

Usage:
    pageshot serve [--host HOST] [--port PORT] [--db-path PATH] [--static-dir DIR] ...
    pageshot refresh [--db-path PATH] [--sweeps N]
    pageshot capture URL [-o out.png] [--force] [--preview] [--db-path PATH]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from contextlib import AsyncExitStack
from dataclasses import asdict
from pathlib import Path

from .config import CaptureConfig


def _config(args: argparse.Namespace) -> CaptureConfig:
    return CaptureConfig.from_env(root_domain=(getattr(args, "root_domain", "") or "").strip().lower() or None)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the HTTP server, forwarding any extra args to the server."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


async def _refresh(args: argparse.Namespace) -> list[dict]:
    from .refresher import BackgroundRefresher
    from .server import build_capabilities

    config = _config(args)
    reports = []
    async with AsyncExitStack() as stack:
        caps, _pool = await build_capabilities(
            stack, config=config, db_path=args.db_path, max_contexts=args.max_contexts
        )
        refresher = BackgroundRefresher(caps)
        for _ in range(max(1, args.sweeps)):
            report = await refresher.run_once()
            reports.append(asdict(report))
            if report.cursor_action != "advanced":
                break
    return reports


def cmd_refresh(args: argparse.Namespace) -> None:
    """Run background refresh sweeps once (for external cron)."""
    reports = asyncio.run(_refresh(args))
    print(json.dumps(reports, indent=2, ensure_ascii=False))


async def _capture(args: argparse.Namespace):
    from .resolver import CaptureResolver
    from .server import build_capabilities
    from .tasks import DeferredTasks

    config = _config(args)
    async with AsyncExitStack() as stack:
        caps, _pool = await build_capabilities(stack, config=config, db_path=args.db_path, max_contexts=1)
        tasks = DeferredTasks()
        try:
            return await CaptureResolver(caps).capture(args.url, force=args.force, preview=args.preview, tasks=tasks)
        finally:
            await tasks.drain()


def cmd_capture(args: argparse.Namespace) -> None:
    """Resolve one URL and write the image to a file."""
    image = asyncio.run(_capture(args))
    output = Path(args.output or "capture.png")
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(image.content)
    summary = {"output": str(output), "bytes": len(image.content), "content_type": image.content_type}
    summary.update(image.response_headers())
    print(json.dumps(summary, indent=2))


def _add_store_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db-path", default="", help="SQLite key-value database (default: in-memory)")
    p.add_argument("--root-domain", default="", help="Domain eligible for rendering")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PageShot CLI", prog="pageshot")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Start HTTP server (extra args forwarded to server)")

    p_refresh = subparsers.add_parser("refresh", help="Run background refresh sweep(s)")
    _add_store_args(p_refresh)
    p_refresh.add_argument("--sweeps", type=int, default=1, help="Max sweeps to run (default: 1)")
    p_refresh.add_argument("--max-contexts", type=int, default=2, help="Concurrent browser contexts (default: 2)")

    p_capture = subparsers.add_parser("capture", help="Resolve a preview image for one URL")
    p_capture.add_argument("url", help="Target URL")
    p_capture.add_argument("-o", "--output", type=str, metavar="PATH", help="Output file (default: capture.png)")
    p_capture.add_argument("--force", action="store_true", help="Ignore the cache and re-render")
    p_capture.add_argument("--preview", action="store_true", help="Render without cache or meta lookup")
    _add_store_args(p_capture)

    return parser


_COMMANDS = {"serve": cmd_serve, "refresh": cmd_refresh, "capture": cmd_capture}


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    if args.command != "serve":
        from .logging_config import configure as configure_logging

        configure_logging(json_output=False, level="DEBUG" if args.verbose else "INFO")

    try:
        _COMMANDS[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        from .problem_details import from_exception

        problem = from_exception(e, preview=getattr(args, "preview", False))
        print(problem.to_cli_text(), file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
