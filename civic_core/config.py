"""Centralised configuration for the civic data integration core."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _load_json_env(name: str, default: Any) -> Any:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return default
    if isinstance(value, type(default)):
        return value
    return default


# --- Legislative data API (LegiScan) ---------------------------------------

LEGISCAN_API_KEY = os.getenv("LEGISCAN_API_KEY", "")
LEGISCAN_API_BASE_URL = os.getenv("LEGISCAN_API_BASE_URL", "https://api.legiscan.com/")
LEGISCAN_MONTHLY_QUOTA = int(os.getenv("LEGISCAN_MONTHLY_QUOTA", "30000"))
LEGISCAN_QUOTA_WINDOW_SECONDS = int(os.getenv("LEGISCAN_QUOTA_WINDOW_SECONDS", str(30 * 24 * 3600)))

# --- Congress.gov API ------------------------------------------------------

CONGRESS_API_KEY = os.getenv("CONGRESS_API_KEY", "")
CONGRESS_API_BASE_URL = os.getenv("CONGRESS_API_BASE_URL", "https://api.congress.gov/v3")
CONGRESS_HOURLY_QUOTA = int(os.getenv("CONGRESS_HOURLY_QUOTA", "5000"))

# --- Geocoding API (Geocodio) ----------------------------------------------

GEOCODIO_API_KEY = os.getenv("GEOCODIO_API_KEY", "")
GEOCODIO_API_BASE_URL = os.getenv("GEOCODIO_API_BASE_URL", "https://api.geocod.io/v1.7")
GEOCODIO_DAILY_QUOTA = int(os.getenv("GEOCODIO_DAILY_QUOTA", "2500"))

# --- Resilience defaults ---------------------------------------------------

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "8"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.2"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "30"))

BREAKER_FAILURE_THRESHOLD = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
BREAKER_FAILURE_WINDOW_SECONDS = float(os.getenv("BREAKER_FAILURE_WINDOW_SECONDS", "60"))
BREAKER_COOLDOWN_SECONDS = float(os.getenv("BREAKER_COOLDOWN_SECONDS", "60"))
BREAKER_MAX_COOLDOWN_SECONDS = float(os.getenv("BREAKER_MAX_COOLDOWN_SECONDS", "900"))
BREAKER_HALF_OPEN_PROBES = int(os.getenv("BREAKER_HALF_OPEN_PROBES", "1"))

# Per-upstream overrides, e.g. {"geocoding": {"failure_threshold": 3}}
UPSTREAM_OVERRIDES: dict[str, dict[str, Any]] = _load_json_env("UPSTREAM_OVERRIDES", {})

# --- Cache -----------------------------------------------------------------

CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "1000"))

CACHE_TIER_TTLS: dict[str, int] = _load_json_env(
    "CACHE_TIER_TTLS",
    {
        "volatile": 15 * 60,  # 15 minutes
        "standard": 4 * 3600,  # 4 hours
        "durable": 24 * 3600,  # 24 hours
    },
)

# --- Redis -----------------------------------------------------------------

# Empty disables quota persistence; counters then live only in process.
REDIS_URL = os.getenv("REDIS_URL", "")

# --- District data ---------------------------------------------------------

_DATA_DIRECTORY = Path(__file__).resolve().parent / "data"

STATIC_DISTRICTS_PATH = Path(
    os.getenv("STATIC_DISTRICTS_PATH", str(_DATA_DIRECTORY / "zip_districts.json"))
).resolve()
_boundary_env = os.getenv("DISTRICT_BOUNDARIES_PATH")
DISTRICT_BOUNDARIES_PATH = Path(_boundary_env).resolve() if _boundary_env else None

DEFAULT_STATE = os.getenv("DEFAULT_STATE", "CA")
CURRENT_CONGRESS = int(os.getenv("CURRENT_CONGRESS", "119"))


def build_upstream_config() -> dict[str, dict[str, Any]]:
    """Return per-upstream settings with any JSON overrides applied."""

    resilience = {
        "timeout": REQUEST_TIMEOUT_SECONDS,
        "max_retries": MAX_RETRIES,
        "backoff_base": RETRY_BASE_DELAY_SECONDS,
        "backoff_max": RETRY_MAX_DELAY_SECONDS,
        "failure_threshold": BREAKER_FAILURE_THRESHOLD,
        "failure_window": BREAKER_FAILURE_WINDOW_SECONDS,
        "cooldown": BREAKER_COOLDOWN_SECONDS,
        "max_cooldown": BREAKER_MAX_COOLDOWN_SECONDS,
        "half_open_probes": BREAKER_HALF_OPEN_PROBES,
    }
    upstreams: dict[str, dict[str, Any]] = {
        "legislative": {
            **resilience,
            "base_url": LEGISCAN_API_BASE_URL,
            "api_key": LEGISCAN_API_KEY,
            "api_key_param": "key",
            "quota_budget": LEGISCAN_MONTHLY_QUOTA,
            "quota_window": LEGISCAN_QUOTA_WINDOW_SECONDS,
        },
        "congressional": {
            **resilience,
            "base_url": CONGRESS_API_BASE_URL,
            "api_key": CONGRESS_API_KEY,
            "api_key_param": "api_key",
            "quota_budget": CONGRESS_HOURLY_QUOTA,
            "quota_window": 3600,
        },
        "geocoding": {
            **resilience,
            "base_url": GEOCODIO_API_BASE_URL,
            "api_key": GEOCODIO_API_KEY,
            "api_key_param": "api_key",
            "quota_budget": GEOCODIO_DAILY_QUOTA,
            "quota_window": 24 * 3600,
            "timeout": min(REQUEST_TIMEOUT_SECONDS, 5.0),
            "max_retries": 2,
            "failure_threshold": 3,
            "cooldown": 30.0,
        },
    }
    for name, override in UPSTREAM_OVERRIDES.items():
        if isinstance(override, dict) and name in upstreams:
            upstreams[name].update(override)
    return upstreams
