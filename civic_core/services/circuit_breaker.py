"""Per-upstream circuit breaker."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional


log = logging.getLogger(__name__)


class BreakerStatus(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Read-only view of a breaker handed out to callers."""

    name: str
    status: BreakerStatus
    failure_count: int
    failure_threshold: int
    opened_at: Optional[float]
    cooldown: float
    half_open_probes_allowed: int


class CircuitBreaker:
    """Closed/Open/HalfOpen state machine guarded by a single lock.

    Failures only count toward tripping while they fall inside the trailing
    ``failure_window``. Every re-open from HalfOpen doubles the cooldown up
    to ``max_cooldown``; a successful probe restores the base cooldown.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        failure_window: float = 60.0,
        cooldown: float = 60.0,
        max_cooldown: float = 900.0,
        half_open_probes: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self._failure_threshold = failure_threshold
        self._failure_window = failure_window
        self._base_cooldown = cooldown
        self._max_cooldown = max(max_cooldown, cooldown)
        self._probes_allowed = max(half_open_probes, 1)
        self._clock = clock
        self._lock = threading.Lock()

        self._status = BreakerStatus.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._cooldown = cooldown
        self._probes_in_flight = 0

    # ------------------------------------------------------------------
    # Internal transitions; callers must hold ``_lock``

    def _prune(self, now: float) -> None:
        cutoff = now - self._failure_window
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    def _open(self, now: float) -> None:
        self._status = BreakerStatus.OPEN
        self._opened_at = now
        self._probes_in_flight = 0
        log.warning(
            "Circuit breaker for %s opened after %s failure(s); cooling down %.1fs",
            self.name,
            len(self._failures),
            self._cooldown,
        )

    def _refresh(self, now: float) -> None:
        if (
            self._status is BreakerStatus.OPEN
            and self._opened_at is not None
            and now >= self._opened_at + self._cooldown
        ):
            self._status = BreakerStatus.HALF_OPEN
            self._probes_in_flight = 0
            log.info("Circuit breaker for %s transitioning to half-open", self.name)

    # ------------------------------------------------------------------

    @property
    def status(self) -> BreakerStatus:
        with self._lock:
            self._refresh(self._clock())
            return self._status

    def allow_request(self) -> bool:
        """Admit a request, reserving a probe slot when half-open."""

        with self._lock:
            self._refresh(self._clock())
            if self._status is BreakerStatus.CLOSED:
                return True
            if self._status is BreakerStatus.HALF_OPEN and self._probes_in_flight < self._probes_allowed:
                self._probes_in_flight += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._refresh(self._clock())
            if self._status is BreakerStatus.OPEN:
                # Late result from a request admitted before the trip.
                return
            if self._status is BreakerStatus.HALF_OPEN:
                log.info("Circuit breaker for %s recovered to closed", self.name)
            self._status = BreakerStatus.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._cooldown = self._base_cooldown
            self._probes_in_flight = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._refresh(now)
            if self._status is BreakerStatus.HALF_OPEN:
                self._cooldown = min(self._cooldown * 2, self._max_cooldown)
                self._failures.append(now)
                self._open(now)
                return
            if self._status is BreakerStatus.OPEN:
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self._failure_threshold:
                self._open(now)

    def release(self) -> None:
        """Return a half-open probe slot without a verdict."""

        with self._lock:
            if self._status is BreakerStatus.HALF_OPEN and self._probes_in_flight > 0:
                self._probes_in_flight -= 1

    def reset(self) -> None:
        with self._lock:
            self._status = BreakerStatus.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._cooldown = self._base_cooldown
            self._probes_in_flight = 0

    def snapshot(self) -> CircuitBreakerState:
        with self._lock:
            now = self._clock()
            self._refresh(now)
            if self._status is BreakerStatus.CLOSED:
                self._prune(now)
            return CircuitBreakerState(
                name=self.name,
                status=self._status,
                failure_count=len(self._failures),
                failure_threshold=self._failure_threshold,
                opened_at=self._opened_at,
                cooldown=self._cooldown,
                half_open_probes_allowed=self._probes_allowed,
            )
