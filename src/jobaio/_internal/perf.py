from __future__ import annotations

import time
from typing import final

from typing_extensions import override


@final
class PerfTimer:
    __slots__: tuple[str, ...] = ("final_time", "first", "laps", "subject")

    def __init__(self, subject: str | None = None) -> None:
        self.subject: str | None = subject
        self.first: int = time.perf_counter_ns()
        self.laps: list[float] = []
        self.final_time: float | None = None

    @override
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__qualname__}("
            f"subject={self.subject!r}, final_time={self.final_time})"
        )

    def _elapsed_ms(self) -> float:
        return (time.perf_counter_ns() - self.first) / 1_000_000

    def lap(self) -> float:
        elapsed = self._elapsed_ms()
        self.laps.append(elapsed)
        return elapsed

    def time(self) -> float:
        """Stop the timer and return the final time in ms."""
        self.final_time = self._elapsed_ms()
        return self.final_time

    def format_result(self) -> str:
        final_time = self.final_time
        if final_time is None:
            final_time = self.time()

        if not self.laps:
            label = f"{self.subject or 'TIME'}:"
            return f"{label:<24} {final_time:.2f}ms"

        lines = [f"{self.subject or 'LAPS'}:"]
        lines.extend(
            f"{i:<16} {lap:.2f}ms" for i, lap in enumerate(self.laps, 1)
        )
        lines.append(f"{'FINAL TIME:':<16} {final_time:.2f}ms")
        return "\n".join(lines)

    @staticmethod
    def difference(a: PerfTimer, b: PerfTimer) -> str:
        """Relative difference of ``b`` against ``a`` in percent."""
        if a.final_time is None or b.final_time is None:
            msg = "Both timers must be stopped before comparing them."
            raise ValueError(msg)
        delta = (b.final_time - a.final_time) / a.final_time
        sign = "+" if delta >= 0 else ""
        return f"{sign}{delta * 100:.2f}%"
