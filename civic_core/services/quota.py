"""Call budgets for metered upstream APIs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .state_store import RedisQuotaStore


log = logging.getLogger(__name__)

WARNING_PERCENT = 70.0
CRITICAL_PERCENT = 90.0


@dataclass
class QuotaWindow:
    window_start: float
    window_duration: float
    calls_used: int
    calls_budget: int

    def rolled(self, now: float) -> bool:
        return now >= self.window_start + self.window_duration


@dataclass(frozen=True)
class QuotaStatus:
    upstream: str
    calls_used: int
    calls_budget: int
    remaining: int
    percent_used: float
    seconds_until_reset: float
    alert_level: str


class QuotaTracker:
    """Tracks one fixed window per upstream.

    The window restarts at the moment the previous one ends. ``calls_used``
    only moves up inside a window and never passes ``calls_budget``.
    Upstreams without a registered budget are unmetered.
    """

    def __init__(
        self,
        store: Optional[RedisQuotaStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._windows: dict[str, QuotaWindow] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def register(self, upstream: str, budget: int, window_duration: float) -> None:
        with self._registry_lock:
            if upstream in self._windows:
                return
            saved = self._store.load(upstream) if self._store is not None else None
            if saved is None:
                window = QuotaWindow(self._clock(), float(window_duration), 0, int(budget))
            else:
                window = QuotaWindow(**saved)
                window.calls_budget = int(budget)
                window.window_duration = float(window_duration)
                # A lowered budget must not leave calls_used above it.
                window.calls_used = min(window.calls_used, window.calls_budget)
            self._windows[upstream] = window
            self._locks[upstream] = threading.Lock()

    def _roll(self, upstream: str, window: QuotaWindow, now: float) -> None:
        if not window.rolled(now):
            return
        elapsed = now - window.window_start
        periods = int(elapsed // window.window_duration)
        window.window_start += periods * window.window_duration
        window.calls_used = 0
        log.info("Quota window for %s reset", upstream)

    def try_reserve(self, upstream: str) -> bool:
        """Reserve one call. ``False`` means the budget is exhausted."""

        lock = self._locks.get(upstream)
        if lock is None:
            return True
        with lock:
            window = self._windows[upstream]
            self._roll(upstream, window, self._clock())
            if window.calls_used >= window.calls_budget:
                log.warning("Quota exhausted for %s (%s calls)", upstream, window.calls_budget)
                return False
            window.calls_used += 1
            # Saved under the lock so the stored count never goes backwards.
            if self._store is not None:
                self._store.save(upstream, window)
        return True

    def status(self, upstream: str) -> Optional[QuotaStatus]:
        lock = self._locks.get(upstream)
        if lock is None:
            return None
        with lock:
            window = self._windows[upstream]
            now = self._clock()
            self._roll(upstream, window, now)
            used, budget = window.calls_used, window.calls_budget
            reset_in = max(window.window_start + window.window_duration - now, 0.0)

        percent = (used * 100.0 / budget) if budget else 100.0
        if used >= budget:
            level = "exhausted"
        elif percent >= CRITICAL_PERCENT:
            level = "critical"
        elif percent >= WARNING_PERCENT:
            level = "warning"
        else:
            level = "normal"
        return QuotaStatus(
            upstream=upstream,
            calls_used=used,
            calls_budget=budget,
            remaining=max(budget - used, 0),
            percent_used=percent,
            seconds_until_reset=reset_in,
            alert_level=level,
        )
