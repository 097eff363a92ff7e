"""Redis persistence for quota windows."""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis

from .redis_client import get_client


log = logging.getLogger(__name__)


class RedisQuotaStore:
    """Stores each upstream's quota window in a Redis hash."""

    def __init__(self) -> None:
        self._redis = get_client()

    def _key(self, upstream: str) -> str:
        return f"quota:{upstream.lower()}"

    def load(self, upstream: str) -> Optional[dict[str, Any]]:
        try:
            data = self._redis.hgetall(self._key(upstream))
        except redis.RedisError as exc:
            log.warning("Could not load quota window for %s: %s", upstream, exc)
            return None
        if not data:
            return None
        try:
            return {
                "window_start": float(data["window_start"]),
                "window_duration": float(data["window_duration"]),
                "calls_used": int(data["calls_used"]),
                "calls_budget": int(data["calls_budget"]),
            }
        except (KeyError, ValueError):
            log.warning("Ignoring malformed quota record for %s", upstream)
            return None

    def save(self, upstream: str, window: Any) -> None:
        mapping = {
            "window_start": window.window_start,
            "window_duration": window.window_duration,
            "calls_used": window.calls_used,
            "calls_budget": window.calls_budget,
        }
        try:
            self._redis.hset(self._key(upstream), mapping=mapping)
        except redis.RedisError as exc:
            log.warning("Could not persist quota window for %s: %s", upstream, exc)
