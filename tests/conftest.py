"""Shared fakes for the civic_core test-suite."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest

# Ensure the application package is importable.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from civic_core.metrics import UpstreamMetrics
from civic_core.services.api_client import ResilientAPIClient, Upstream
from civic_core.services.cache import CacheStore
from civic_core.services.quota import QuotaTracker


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeRedis:
    hashes: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def hset(self, key: str, *args, **kwargs) -> None:
        mapping = kwargs.get("mapping") or {}
        self.hashes.setdefault(key, {}).update({str(k): str(v) for k, v in mapping.items()})

    def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.hashes.get(key, {}))


def make_response(status: int = 200, payload: Any = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    return response


def make_upstream(name: str = "congressional", **overrides: Any) -> Upstream:
    settings = {
        "base_url": "https://api.example.test/v3",
        "api_key": "SECRET",
        "max_retries": 3,
        "backoff_base": 0.2,
        "backoff_max": 30.0,
        "failure_threshold": 3,
        "failure_window": 60.0,
        "cooldown": 30.0,
        "max_cooldown": 120.0,
        "half_open_probes": 1,
        "quota_budget": 100,
        "quota_window": 3600.0,
    }
    settings.update(overrides)
    return Upstream(name=name, **settings)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def build_client(clock, session, sleeps):
    """Factory producing an isolated client whose waits are recorded, not slept."""

    def _sleep(delay, cancel_event):
        sleeps.append(delay)
        return bool(cancel_event is not None and cancel_event.is_set())

    def _build(*upstreams: Upstream, max_entries: int = 100, jitter=lambda low, high: 1.0) -> ResilientAPIClient:
        return ResilientAPIClient(
            upstreams=list(upstreams) or [make_upstream()],
            cache=CacheStore(max_entries=max_entries, clock=clock),
            quota=QuotaTracker(clock=clock),
            session=session,
            app_metrics=UpstreamMetrics(),
            clock=clock,
            sleep=_sleep,
            jitter=jitter,
        )

    return _build
