"""Geocoding upstream wrapper returning ZIP centroids and district overlaps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from .. import config
from ..errors import InvalidPayloadError
from .api_client import RequestSpec, ResilientAPIClient
from .cache import CacheTier


log = logging.getLogger(__name__)

UPSTREAM = "geocoding"


@dataclass(frozen=True)
class DistrictShare:
    district: int
    proportion: float


@dataclass(frozen=True)
class GeocodeResult:
    zip: str
    lat: float
    lng: float
    city: Optional[str] = None
    county: Optional[str] = None
    # level -> overlapping districts with the share of the ZIP they cover
    districts: dict[str, list[DistrictShare]] = field(default_factory=dict)
    # served from an expired cache entry while the geocoder was unavailable
    stale: bool = False


def normalize_geocode(payload: Any, zip_code: str, congress: int = config.CURRENT_CONGRESS) -> GeocodeResult:
    """Reduce a geocoder response to the best-scoring result for ``zip_code``."""

    results = payload.get("results") if isinstance(payload, dict) else None
    if not results:
        raise InvalidPayloadError(f"No geocoding results for {zip_code}", upstream=UPSTREAM)

    best = max(
        (item for item in results if isinstance(item, dict)),
        key=lambda item: float(item.get("accuracy") or 0.0),
        default=None,
    )
    location = best.get("location") if best else None
    if not isinstance(location, dict) or "lat" not in location or "lng" not in location:
        raise InvalidPayloadError(f"Geocoding result for {zip_code} has no location", upstream=UPSTREAM)

    components = _section(best, "address_components", zip_code)
    fields = _section(best, "fields", zip_code)
    legislative = _section(fields, "state_legislative_districts", zip_code)

    congressional = [
        entry
        for entry in fields.get("congressional_districts") or []
        if isinstance(entry, dict) and (not entry.get("congress_numbers") or congress in entry["congress_numbers"])
    ]
    county = _section(fields, "county", zip_code).get("name") or components.get("county")

    return GeocodeResult(
        zip=zip_code,
        lat=float(location["lat"]),
        lng=float(location["lng"]),
        city=components.get("city"),
        county=county,
        districts={
            "congressional": _shares(congressional),
            "senate": _shares(legislative.get("senate") or []),
            "assembly": _shares(legislative.get("house") or []),
        },
    )


def _section(parent: dict[str, Any], name: str, zip_code: str) -> dict[str, Any]:
    value = parent.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidPayloadError(f"Geocoding result for {zip_code} has a malformed {name!r}", upstream=UPSTREAM)
    return value


def _shares(entries: list[Any]) -> list[DistrictShare]:
    shares: list[DistrictShare] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            number = int(entry.get("district_number"))
        except (TypeError, ValueError):
            continue
        proportion = entry.get("proportion")
        shares.append(DistrictShare(number, float(proportion) if proportion is not None else 0.0))
    return shares


class GeocodingClient:
    """Looks up ZIP centroids through the resilient client."""

    def __init__(self, client: ResilientAPIClient, state: str = config.DEFAULT_STATE) -> None:
        self._client = client
        self._state = state

    def geocode_zip(self, zip_code: str) -> GeocodeResult:
        request = RequestSpec(
            path="geocode",
            params={"postal_code": zip_code, "state": self._state, "fields": "cd,stateleg"},
            tier=CacheTier.DURABLE,
            normalizer=lambda payload: normalize_geocode(payload, zip_code),
        )
        result = self._client.fetch(UPSTREAM, request)
        if result.stale:
            log.info("Using stale geocode for %s", zip_code)
            return replace(result.data, stale=True)
        return result.data
