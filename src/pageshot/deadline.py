# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-request deadline with bounded phase budgets and stage timing.

One absolute deadline is fixed when a request starts.  Every outbound
operation asks for ``budget(phase_ms)``: the phase default, cut down to
the time remaining, but never below ``floor_ms`` so a nearly exhausted
request still makes one minimal attempt instead of failing instantly.

Stage records survive cancellation so a timeout error can report where
the time went.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

DEFAULT_FLOOR_MS = 1000


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0


class Deadline:
    """Absolute monotonic deadline shared by all phases of one capture."""

    __slots__ = ("_start_ns", "_deadline_ns", "_floor_ms", "_stages", "_current")

    def __init__(self, overall_ms: int, *, floor_ms: int = DEFAULT_FLOOR_MS) -> None:
        self._start_ns: int = time.monotonic_ns()
        self._deadline_ns: int = self._start_ns + int(overall_ms) * 1_000_000
        self._floor_ms = floor_ms
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None

    @classmethod
    def start(cls, overall_ms: int, *, floor_ms: int = DEFAULT_FLOOR_MS) -> Deadline:
        return cls(overall_ms, floor_ms=floor_ms)

    # -- Budgets --

    def remaining_ms(self) -> int:
        """Milliseconds left before the deadline (never negative)."""
        return max(0, (self._deadline_ns - time.monotonic_ns()) // 1_000_000)

    def budget(self, phase_ms: int) -> int:
        """``max(floor, min(phase_ms, remaining))`` in milliseconds."""
        return max(self._floor_ms, min(phase_ms, self.remaining_ms()))

    def budget_s(self, phase_ms: int) -> float:
        """``budget()`` in seconds, for httpx / asyncio timeouts."""
        return self.budget(phase_ms) / 1000

    def settle_ms(self, idle_ms: int, cap_ms: int) -> int:
        """Post-navigation settle wait: ``idle_ms`` bounded by ``cap_ms`` and time left.

        May return 0 when the deadline is exhausted (skip the wait).
        """
        return min(idle_ms, max(0, min(cap_ms, self.remaining_ms())))

    # -- Stage timing --

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    def elapsed_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def elapsed_per_stage(self) -> dict[str, float]:
        """Return {stage_name: elapsed_ms} for all stages (including current)."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        for s in self._stages:
            result[s.name] = round((s.end_ns - s.start_ns) / 1e6, 1)
        if self._current is not None:
            result[self._current.name] = round((now - self._current.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        """Structured diagnostic attached to timeout failures."""
        return {
            "stages": self.elapsed_per_stage(),
            "timed_out_at": self.current_stage or "unknown",
            "total_ms": self.elapsed_ms(),
        }
