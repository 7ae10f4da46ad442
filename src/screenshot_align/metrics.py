"""Per-strategy timing and attempt/candidate counters for alignment calls.

Keys follow ``strategy.<id>`` for wall-clock time, with ``.attempts`` and
``.candidates`` counters beside it. Other blocks (``align.cascade``) only
contribute timings.
"""
from __future__ import annotations

import logging
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from time import perf_counter
from typing import Dict, Iterator, List, Optional

from .types import StrategyId

_ACTIVE_TRACKER: ContextVar["MetricsTracker | None"] = ContextVar(
    "screenshot_align_metrics_tracker", default=None
)


def strategy_key(method: StrategyId) -> str:
    return f"strategy.{method.value}"


@dataclass
class MetricsTracker:
    """Accumulates per-key durations (seconds) and counters for one or more calls."""

    timings: Dict[str, float] = field(default_factory=dict)
    counters: Dict[str, float] = field(default_factory=dict)

    def add_time(self, key: str, duration: float) -> None:
        if duration < 0.0:
            return
        self.timings[key] = self.timings.get(key, 0.0) + duration

    def increment(self, key: str, value: float = 1.0) -> None:
        self.counters[key] = self.counters.get(key, 0.0) + value

    def get_time(self, key: str) -> float:
        return self.timings.get(key, 0.0)

    def get_count(self, key: str) -> float:
        return self.counters.get(key, 0.0)

    def attempts(self, method: StrategyId) -> int:
        return int(self.get_count(f"{strategy_key(method)}.attempts"))

    def candidates(self, method: StrategyId) -> int:
        return int(self.get_count(f"{strategy_key(method)}.candidates"))

    def summary_lines(self) -> List[str]:
        """One line per strategy that ran, then the remaining timed blocks."""

        lines = []
        for method in StrategyId:
            key = strategy_key(method)
            runs = self.attempts(method)
            if not runs:
                continue
            lines.append(
                f"{method.value:20s} {self.get_time(key) * 1000:9.1f} ms"
                f"  {self.candidates(method)}/{runs} candidate(s)"
            )
        for key in sorted(self.timings):
            if not key.startswith("strategy."):
                lines.append(f"{key:20s} {self.timings[key] * 1000:9.1f} ms")
        return lines


def get_tracker() -> "MetricsTracker | None":
    return _ACTIVE_TRACKER.get()


def record(key: str, value: float = 1.0) -> None:
    """Increment *key* on the active tracker, if one is installed."""

    tracker = get_tracker()
    if tracker is not None:
        tracker.increment(key, value)


def record_attempt(method: StrategyId) -> None:
    record(f"{strategy_key(method)}.attempts")


def record_candidate(method: StrategyId) -> None:
    record(f"{strategy_key(method)}.candidates")


@contextmanager
def use_tracker(tracker: MetricsTracker) -> Iterator[MetricsTracker]:
    token = _ACTIVE_TRACKER.set(tracker)
    try:
        yield tracker
    finally:
        _ACTIVE_TRACKER.reset(token)


class Timer(AbstractContextManager["Timer"]):
    """Measure wall-clock time of a block and report it to the active tracker."""

    def __init__(
        self,
        key: str,
        *,
        tracker: Optional[MetricsTracker] = None,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
    ) -> None:
        self.key = key
        self._tracker = tracker
        self._logger = logger
        self._level = level
        self.duration: float = 0.0
        self._start: Optional[float] = None

    def __enter__(self) -> "Timer":  # type: ignore[override]
        self._start = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        if self._start is None:
            return None
        self.duration = perf_counter() - self._start
        tracker = self._tracker or get_tracker()
        if tracker is not None:
            tracker.add_time(self.key, self.duration)
        if self._logger is not None and self._logger.isEnabledFor(self._level):
            self._logger.log(self._level, "%s took %.3f s", self.key, self.duration)
        return None


def strategy_timer(method: StrategyId, logger: Optional[logging.Logger] = None) -> Timer:
    return Timer(strategy_key(method), logger=logger)


__all__ = [
    "MetricsTracker",
    "Timer",
    "get_tracker",
    "record",
    "record_attempt",
    "record_candidate",
    "strategy_key",
    "strategy_timer",
    "use_tracker",
]
