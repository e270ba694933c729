# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Deferred work that outlives the response.

Cache population and self-healing deletes must not delay the caller, but
must still run to completion.  ``DeferredTasks`` starts each coroutine as
an ``asyncio`` task immediately and keeps a strong reference; the hosting
shell awaits ``drain()`` once the response has been sent (the server
attaches it as a Starlette background task, the CLI awaits it before exit).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class DeferredTasks:
    """Sink for best-effort background coroutines."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def defer(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Deferred task %s failed: %s", task.get_name(), exc, exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every deferred task (including ones deferred while draining)."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
