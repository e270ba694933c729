# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. CLI: ConsoleRenderer, server: JSONRenderer.

Modules keep logging through ``logging.getLogger(__name__)``; records are
rendered by structlog's ``ProcessorFormatter`` on a single stderr handler.
Per-request fields bound with ``bind_request()`` appear on every line
emitted while that request is being handled.

Leaf module — no pageshot imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Chatty third-party loggers capped at WARNING unless the root level is DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _pre_chain() -> list:
    """Processors applied to both structlog and foreign (stdlib) records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _stderr_handler(json_output: bool) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Install the stderr handler on the root logger.

    Args:
        json_output: True for JSON lines (server), False for human-readable (CLI).
        level: Root logger level name; unknown names fall back to INFO.
    """
    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stderr_handler(json_output))
    root.setLevel(root_level)

    if root_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def bind_request(**fields: object) -> None:
    """Replace the per-request log context (e.g. ``target``, ``force``)."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**fields)
