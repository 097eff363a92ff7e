"""Bills, committees and representatives adapters built on the resilient client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .. import config
from ..errors import InvalidInputError, InvalidPayloadError
from .api_client import FetchResult, RequestSpec, ResilientAPIClient
from .cache import CacheTier
from .districts import DistrictAssignment, DistrictResolver


log = logging.getLogger(__name__)

LEGISLATIVE = "legislative"
CONGRESSIONAL = "congressional"


@dataclass(frozen=True)
class Bill:
    bill_id: int
    number: str
    title: str
    state: str
    status: Optional[str] = None
    last_action: Optional[str] = None
    last_action_date: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Committee:
    system_code: str
    name: str
    chamber: str
    url: Optional[str] = None


@dataclass(frozen=True)
class Representative:
    bioguide_id: str
    name: str
    state: str
    party: Optional[str] = None
    district: Optional[int] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Listing:
    """Normalised records plus whether they came from stale cache."""

    items: list[Any]
    stale: bool = False

    @classmethod
    def from_result(cls, result: FetchResult) -> "Listing":
        return cls(items=list(result.data), stale=result.stale)


def _require(record: Any, *names: str, kind: str) -> None:
    if not isinstance(record, dict):
        raise InvalidPayloadError(f"{kind} record is not an object")
    missing = [name for name in names if record.get(name) in (None, "")]
    if missing:
        raise InvalidPayloadError(f"{kind} record missing {', '.join(missing)}")


def _legiscan_rows(payload: Any, section: str) -> list[dict[str, Any]]:
    if not isinstance(payload, dict) or payload.get("status") != "OK":
        status = payload.get("status") if isinstance(payload, dict) else None
        raise InvalidPayloadError(f"Legislative API returned status {status!r}", upstream=LEGISLATIVE)
    body = payload.get(section)
    if not isinstance(body, dict):
        raise InvalidPayloadError(f"Legislative API payload has no {section}", upstream=LEGISLATIVE)
    # Rows are keyed "0", "1", ... next to metadata such as "summary" and "session".
    keys = sorted((key for key in body if key.isdigit()), key=int)
    return [body[key] for key in keys]


def normalize_bill(record: Any, state: str) -> Bill:
    _require(record, "bill_id", "title", kind="Bill")
    number = record.get("bill_number") or record.get("number")
    if not number:
        raise InvalidPayloadError("Bill record missing number")
    status = record.get("status")
    return Bill(
        bill_id=int(record["bill_id"]),
        number=str(number),
        title=str(record["title"]),
        state=str(record.get("state") or state),
        status=str(status) if status is not None else None,
        last_action=record.get("last_action"),
        last_action_date=record.get("last_action_date"),
        url=record.get("url"),
    )


def normalize_committee(record: Any) -> Committee:
    _require(record, "systemCode", "name", "chamber", kind="Committee")
    return Committee(
        system_code=record["systemCode"],
        name=record["name"],
        chamber=record["chamber"],
        url=record.get("url"),
    )


def normalize_member(record: Any) -> Representative:
    _require(record, "bioguideId", "name", "state", kind="Member")
    district = record.get("district")
    return Representative(
        bioguide_id=record["bioguideId"],
        name=record["name"],
        state=record["state"],
        party=record.get("partyName"),
        district=int(district) if district is not None else None,
        url=record.get("url"),
    )


class BillsAdapter:
    def __init__(self, client: ResilientAPIClient) -> None:
        self._client = client

    def search(self, state: str, query: str) -> Listing:
        if not query.strip():
            raise InvalidInputError("Bill search requires a query", upstream=LEGISLATIVE)
        request = RequestSpec(
            path="",
            params={"op": "getSearch", "state": state.upper(), "query": query.strip()},
            tier=CacheTier.VOLATILE,
            normalizer=lambda payload: [normalize_bill(row, state.upper()) for row in _legiscan_rows(payload, "searchresult")],
        )
        return Listing.from_result(self._client.fetch(LEGISLATIVE, request))

    def master_list(self, state: str) -> Listing:
        request = RequestSpec(
            path="",
            params={"op": "getMasterList", "state": state.upper()},
            tier=CacheTier.STANDARD,
            normalizer=lambda payload: [normalize_bill(row, state.upper()) for row in _legiscan_rows(payload, "masterlist")],
        )
        return Listing.from_result(self._client.fetch(LEGISLATIVE, request))


class CommitteesAdapter:
    def __init__(self, client: ResilientAPIClient) -> None:
        self._client = client

    def list(self, chamber: str, limit: int = 250) -> Listing:
        chamber = chamber.lower()
        if chamber not in {"house", "senate", "joint"}:
            raise InvalidInputError(f"Unknown chamber {chamber!r}", upstream=CONGRESSIONAL)
        request = RequestSpec(
            path=f"committee/{chamber}",
            params={"format": "json", "limit": limit},
            tier=CacheTier.DURABLE,
            normalizer=lambda payload: [normalize_committee(row) for row in payload["committees"]],
        )
        return Listing.from_result(self._client.fetch(CONGRESSIONAL, request))


class RepresentativesAdapter:
    def __init__(self, client: ResilientAPIClient, resolver: Optional[DistrictResolver] = None) -> None:
        self._client = client
        self._resolver = resolver

    def for_district(self, state: str, district: int) -> Listing:
        request = RequestSpec(
            path=f"member/{state.upper()}/{int(district)}",
            params={"format": "json", "currentMember": "true"},
            tier=CacheTier.DURABLE,
            normalizer=lambda payload: [normalize_member(row) for row in payload["members"]],
        )
        return Listing.from_result(self._client.fetch(CONGRESSIONAL, request))

    def for_zip(self, zip_code: str, state: str = config.DEFAULT_STATE) -> tuple[DistrictAssignment, Listing]:
        if self._resolver is None:
            raise InvalidInputError("No district resolver configured")
        assignment = self._resolver.resolve(zip_code)
        listing = self.for_district(state, assignment.primary.congressional_district)
        return assignment, listing
