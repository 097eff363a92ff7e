"""Resilient client for metered third-party APIs.

Every outbound call goes through :meth:`ResilientAPIClient.fetch`, which
layers the shared cache, the per-upstream circuit breaker and the quota
tracker around a plain ``requests`` GET:

1. a fresh cache entry is returned without touching breaker or quota;
2. an open breaker or an exhausted quota serves the last cached value
   (flagged stale), then any configured fallback, or raises;
3. otherwise the request is retried with capped exponential backoff and
   jitter, the payload is normalised and cached under the request's tier.

The breaker hears about each ``fetch`` at most once, however many retries
it took.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

import requests

from .. import config
from ..errors import (
    ApiError,
    CircuitOpenError,
    InvalidInputError,
    InvalidPayloadError,
    QuotaExceededError,
    RequestCancelled,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from ..metrics import UpstreamMetrics, metrics as default_metrics
from .cache import MISS, CacheStore, CacheTier
from .circuit_breaker import BreakerStatus, CircuitBreaker, CircuitBreakerState
from .quota import QuotaStatus, QuotaTracker


log = logging.getLogger(__name__)

JITTER_RATIO = 0.2
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class Fallback:
    """Last-resort data source tried when the upstream cannot answer.

    ``handler`` receives the request and the error that ended the call and
    returns replacement data, or ``None`` to defer to the next fallback.
    ``condition`` limits the fallback to particular errors.
    """

    name: str
    handler: Callable[["RequestSpec", ApiError], Any]
    condition: Optional[Callable[[ApiError], bool]] = None

    def applies_to(self, error: ApiError) -> bool:
        return self.condition is None or bool(self.condition(error))


@dataclass(frozen=True)
class Upstream:
    """Static settings for one third-party API."""

    name: str
    base_url: str
    api_key: str = ""
    api_key_param: str = "api_key"
    timeout: float = 8.0
    max_retries: int = 3
    backoff_base: float = 0.2
    backoff_max: float = 30.0
    failure_threshold: int = 5
    failure_window: float = 60.0
    cooldown: float = 60.0
    max_cooldown: float = 900.0
    half_open_probes: int = 1
    quota_budget: Optional[int] = None
    quota_window: float = 30 * 24 * 3600
    fallbacks: tuple[Fallback, ...] = ()

    @classmethod
    def from_config(cls, name: str, settings: Mapping[str, Any]) -> "Upstream":
        known = {key: value for key, value in settings.items() if key in cls.__dataclass_fields__}
        return cls(name=name, **known)


def default_upstreams() -> list[Upstream]:
    return [Upstream.from_config(name, settings) for name, settings in config.build_upstream_config().items()]


@dataclass(frozen=True)
class RequestSpec:
    """Shape of a single GET against an upstream."""

    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    tier: CacheTier = CacheTier.STANDARD
    ttl: Optional[float] = None
    normalizer: Optional[Callable[[Any], Any]] = None
    # Per-call overrides: bypass the cache entirely, or change the retry count.
    skip_cache: bool = False
    max_retries: Optional[int] = None

    def cache_key(self, upstream: str) -> str:
        items = sorted((str(key), str(value)) for key, value in self.params.items())
        query = urlencode(items)
        return f"{upstream}:{self.path.strip('/')}?{query}"


@dataclass(frozen=True)
class FetchResult:
    data: Any
    source: str
    stale: bool = False
    attempts: int = 0

    @property
    def from_cache(self) -> bool:
        return self.source in ("cache", "stale-cache")


@dataclass(frozen=True)
class UpstreamHealth:
    upstream: str
    status: str
    breaker: BreakerStatus
    failure_count: int
    quota_alert: Optional[str]
    error_rate: float

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


class _RetryableFailure(Exception):
    """Transport-level failure worth another attempt."""


class ResilientAPIClient:
    """Thread-safe gateway owning breaker and quota state for each upstream."""

    def __init__(
        self,
        upstreams: Optional[list[Upstream]] = None,
        cache: Optional[CacheStore] = None,
        quota: Optional[QuotaTracker] = None,
        session: Optional[requests.Session] = None,
        app_metrics: Optional[UpstreamMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float, Optional[threading.Event]], bool]] = None,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self._cache = cache or CacheStore()
        self._quota = quota or QuotaTracker()
        self._session = session or requests.Session()
        self._metrics = app_metrics or default_metrics
        self._clock = clock
        self._sleep = sleep or _wait
        self._jitter = jitter
        self._upstreams: dict[str, Upstream] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        for upstream in upstreams if upstreams is not None else default_upstreams():
            self.register(upstream)

    @property
    def cache(self) -> CacheStore:
        return self._cache

    def register(self, upstream: Upstream) -> None:
        self._upstreams[upstream.name] = upstream
        self._breakers[upstream.name] = CircuitBreaker(
            upstream.name,
            failure_threshold=upstream.failure_threshold,
            failure_window=upstream.failure_window,
            cooldown=upstream.cooldown,
            max_cooldown=upstream.max_cooldown,
            half_open_probes=upstream.half_open_probes,
            clock=self._clock,
        )
        if upstream.quota_budget is not None:
            self._quota.register(upstream.name, upstream.quota_budget, upstream.quota_window)

    # ------------------------------------------------------------------
    # Public entry point

    def fetch(
        self,
        upstream: str,
        request: RequestSpec,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        target = self._upstreams.get(upstream)
        if target is None:
            raise InvalidInputError(f"Unknown upstream: {upstream}", upstream=upstream)
        if not isinstance(request, RequestSpec) or not isinstance(request.path, str):
            raise InvalidInputError("Malformed request spec", upstream=upstream)
        if any(value is None for value in request.params.values()):
            raise InvalidInputError(f"Request to {request.path!r} has empty parameters", upstream=upstream)
        if request.max_retries is not None and request.max_retries < 0:
            raise InvalidInputError(f"Negative retry count for {request.path!r}", upstream=upstream)

        key = request.cache_key(upstream)
        if not request.skip_cache:
            cached = self._cache.get(key)
            if cached is not MISS:
                self._metrics.add_cache_hit(upstream)
                return FetchResult(cached, source="cache")

        breaker = self._breakers[upstream]
        if not breaker.allow_request():
            self._metrics.add_short_circuit(upstream)
            return self._degrade(
                target,
                request,
                CircuitOpenError(f"Circuit breaker for {upstream} is open", upstream=upstream),
            )

        try:
            data, attempts = self._call_with_retries(target, request, cancel_event)
        except RequestCancelled:
            breaker.release()
            raise
        except QuotaExceededError as exc:
            breaker.release()
            return self._degrade(target, request, exc)
        except UpstreamRejectedError:
            breaker.release()
            raise
        except (UpstreamUnavailableError, InvalidPayloadError) as exc:
            breaker.record_failure()
            return self._degrade(target, request, exc)
        except Exception:
            # No verdict on the upstream; hand the probe slot back.
            breaker.release()
            raise

        breaker.record_success()
        if not request.skip_cache:
            self._cache.put(key, data, tier=request.tier, ttl=request.ttl)
        return FetchResult(data, source="network", attempts=attempts)

    # ------------------------------------------------------------------
    # Monitoring helpers

    def breaker_state(self, upstream: str) -> CircuitBreakerState:
        return self._breakers[upstream].snapshot()

    def quota_status(self, upstream: str) -> Optional[QuotaStatus]:
        return self._quota.status(upstream)

    def reset_breaker(self, upstream: str) -> None:
        self._breakers[upstream].reset()

    def clear_cache(self) -> None:
        self._cache.clear()

    def health(self, upstream: str) -> UpstreamHealth:
        """Summarise an upstream as healthy, degraded or unavailable.

        Unavailable means calls are currently refused (open breaker or spent
        quota); degraded covers a half-open breaker, recent failures and a
        quota in its critical band.
        """

        if upstream not in self._upstreams:
            raise InvalidInputError(f"Unknown upstream: {upstream}", upstream=upstream)
        breaker = self._breakers[upstream].snapshot()
        quota = self._quota.status(upstream)
        quota_alert = quota.alert_level if quota else None
        counters = self._metrics.snapshot(upstream)
        error_rate = counters["failures"] / counters["calls"] if counters["calls"] else 0.0

        if breaker.status is BreakerStatus.OPEN or quota_alert == "exhausted":
            status = "unavailable"
        elif breaker.status is BreakerStatus.HALF_OPEN or breaker.failure_count or quota_alert == "critical":
            status = "degraded"
        else:
            status = "healthy"
        return UpstreamHealth(
            upstream=upstream,
            status=status,
            breaker=breaker.status,
            failure_count=breaker.failure_count,
            quota_alert=quota_alert,
            error_rate=error_rate,
        )

    def check_health(self, upstream: str, path: str, params: Optional[Mapping[str, Any]] = None) -> bool:
        """Ping ``path`` once, bypassing the cache; True when it answered."""

        request = RequestSpec(path=path, params=dict(params or {}), skip_cache=True, max_retries=0)
        try:
            result = self.fetch(upstream, request)
        except ApiError as exc:
            log.warning("Health check for %s failed: %s", upstream, exc)
            return False
        return result.source == "network"

    def stats(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for name in self._upstreams:
            breaker = self._breakers[name].snapshot()
            quota = self._quota.status(name)
            report[name] = {
                "health": self.health(name).status,
                "breaker": breaker.status.value,
                "failure_count": breaker.failure_count,
                "quota_remaining": quota.remaining if quota else None,
                "quota_alert": quota.alert_level if quota else None,
                **self._metrics.snapshot(name),
            }
        report["cache"] = self._cache.stats()
        return report

    # ------------------------------------------------------------------
    # Internals

    def _degrade(self, upstream: Upstream, request: RequestSpec, error: ApiError) -> FetchResult:
        """Answer from the last cached value or a fallback, else raise ``error``."""

        if not request.skip_cache:
            key = request.cache_key(upstream.name)
            entry = self._cache.peek(key)
            if entry is not None:
                log.warning("Serving stale cache for %s: %s", key, error)
                self._metrics.add_stale_served(upstream.name)
                return FetchResult(entry.value, source="stale-cache", stale=True)

        for fallback in upstream.fallbacks:
            if not fallback.applies_to(error):
                continue
            try:
                data = fallback.handler(request, error)
            except Exception as exc:
                log.warning("%s fallback %r failed: %s", upstream.name, fallback.name, exc)
                continue
            if data is not None:
                log.info("%s answered by fallback %r after: %s", upstream.name, fallback.name, error)
                return FetchResult(data, source="fallback")
        raise error

    def backoff_delay(self, upstream: Upstream, attempt: int) -> float:
        delay = min(upstream.backoff_base * (2 ** attempt), upstream.backoff_max)
        return delay * self._jitter(1 - JITTER_RATIO, 1 + JITTER_RATIO)

    def _call_with_retries(
        self,
        upstream: Upstream,
        request: RequestSpec,
        cancel_event: Optional[threading.Event],
    ) -> tuple[Any, int]:
        retries = request.max_retries if request.max_retries is not None else upstream.max_retries
        attempts = max(retries, 0) + 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled(f"Request to {upstream.name} cancelled", upstream=upstream.name)
            if not self._quota.try_reserve(upstream.name):
                raise QuotaExceededError(f"Quota exhausted for {upstream.name}", upstream=upstream.name)

            try:
                payload = self._request(upstream, request)
            except _RetryableFailure as exc:
                last_error = exc
                if attempt + 1 >= attempts:
                    break
                delay = self.backoff_delay(upstream, attempt)
                log.warning(
                    "%s request failed (attempt %s/%s): %s; retrying in %.2fs",
                    upstream.name,
                    attempt + 1,
                    attempts,
                    exc,
                    delay,
                )
                if self._sleep(delay, cancel_event):
                    raise RequestCancelled(
                        f"Request to {upstream.name} cancelled during backoff", upstream=upstream.name
                    )
                continue

            if request.normalizer is None:
                return payload, attempt + 1
            try:
                return request.normalizer(payload), attempt + 1
            except InvalidPayloadError as exc:
                exc.upstream = exc.upstream or upstream.name
                raise
            except Exception as exc:
                raise InvalidPayloadError(
                    f"{upstream.name} returned an unusable payload for {request.path}: {exc}",
                    upstream=upstream.name,
                ) from exc

        raise UpstreamUnavailableError(
            f"{upstream.name} unavailable after {attempts} attempt(s): {last_error}",
            upstream=upstream.name,
        )

    def _request(self, upstream: Upstream, request: RequestSpec) -> Any:
        url = f"{upstream.base_url.rstrip('/')}/{request.path.strip('/')}"
        params = dict(request.params)
        if upstream.api_key:
            params[upstream.api_key_param] = upstream.api_key

        started = time.perf_counter()
        try:
            response = self._session.get(url, params=params, timeout=upstream.timeout)
        except requests.RequestException as exc:
            self._metrics.add_call(upstream.name, time.perf_counter() - started, failed=True)
            raise _RetryableFailure(str(exc)) from exc
        elapsed = time.perf_counter() - started

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            self._metrics.add_call(upstream.name, elapsed, failed=True)
            raise _RetryableFailure(f"HTTP {status}")
        if status >= 400:
            self._metrics.add_call(upstream.name, elapsed, failed=True)
            raise UpstreamRejectedError(
                f"{upstream.name} rejected {request.path} with HTTP {status}",
                upstream=upstream.name,
                status_code=status,
            )
        self._metrics.add_call(upstream.name, elapsed)
        try:
            return response.json()
        except ValueError as exc:
            raise _RetryableFailure(f"invalid JSON body: {exc}") from exc


def _wait(delay: float, cancel_event: Optional[threading.Event]) -> bool:
    """Sleep for ``delay`` seconds; return True if cancelled meanwhile."""

    if cancel_event is None:
        time.sleep(delay)
        return False
    return cancel_event.wait(delay)
