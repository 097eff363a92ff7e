"""ZIP code to legislative district resolution.

Strategies run in order until one answers:

* ``StaticTableStrategy``: curated ZIP table, accuracy HIGH.
* ``GeocodedBoundaryStrategy``: geocoded centroid intersected with district
  polygons and the geocoder's overlap shares, accuracy MEDIUM.
* ``HeuristicStrategy``: ZIP range rules, accuracy LOW. Always answers.

When a ZIP overlaps several districts at one level, candidates are ranked by
whether their polygon contains the ZIP centroid, then by the share of the ZIP
they cover (largest first), then by district number (lowest first). The top
candidate of each level forms the primary assignment.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

from .. import config
from ..errors import ApiError, InvalidInputError
from .boundaries import LEVELS, BoundaryIndex
from .cache import MISS, CacheStore, CacheTier
from .geocoding import GeocodeResult, GeocodingClient


log = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"^(\d{5})(?:-\d{4})?$")


class Accuracy(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class DistrictSet:
    assembly_district: int
    senate_district: int
    congressional_district: int

    def for_level(self, level: str) -> int:
        return getattr(self, f"{level}_district")


@dataclass(frozen=True)
class DistrictAssignment:
    zip: str
    primary: DistrictSet
    secondary: tuple[DistrictSet, ...] = ()
    accuracy: Accuracy = Accuracy.LOW
    source: str = "heuristic"
    coordinates: Optional[tuple[float, float]] = None
    city: Optional[str] = None
    county: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """True when callers may want to show a precision disclaimer."""

        return self.accuracy is not Accuracy.HIGH

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["accuracy"] = self.accuracy.value
        data["secondary"] = [asdict(item) for item in self.secondary]
        return data


def normalize_zip(zip_code: Any) -> str:
    """Return the five-digit form of ``zip_code`` or raise ``InvalidInputError``."""

    match = ZIP_PATTERN.match(str(zip_code).strip()) if isinstance(zip_code, (str, int)) else None
    if match is None:
        raise InvalidInputError(f"Invalid ZIP code {zip_code!r}; expected 5 digits")
    return match.group(1)


class ResolutionStrategy(Protocol):
    name: str

    def lookup(self, zip_code: str) -> Optional[DistrictAssignment]:
        ...


# --- Tier 1: static table --------------------------------------------------


class StaticTableStrategy:
    name = "static"

    def __init__(self, table: dict[str, dict[str, int]]) -> None:
        self._table = table

    @classmethod
    def from_file(cls, path: Path = config.STATIC_DISTRICTS_PATH) -> "StaticTableStrategy":
        try:
            with Path(path).open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Static district table unavailable from %s: %s", path, exc)
            raw = {}
        table: dict[str, dict[str, int]] = {}
        for zip_code, row in raw.items():
            try:
                table[zip_code] = {level: int(row[level]) for level in LEVELS}
            except (KeyError, TypeError, ValueError):
                log.warning("Skipping malformed static district row for %s", zip_code)
        return cls(table)

    def lookup(self, zip_code: str) -> Optional[DistrictAssignment]:
        row = self._table.get(zip_code)
        if row is None:
            return None
        return DistrictAssignment(
            zip=zip_code,
            primary=DistrictSet(row["assembly"], row["senate"], row["congressional"]),
            accuracy=Accuracy.HIGH,
            source=self.name,
        )

    def zips_for_district(self, level: str, number: int) -> list[str]:
        if level not in LEVELS:
            raise InvalidInputError(f"Unknown district level {level!r}")
        return sorted(zip_code for zip_code, row in self._table.items() if row[level] == number)

    def coverage(self) -> dict[str, int]:
        rows = self._table.values()
        report = {"zip_codes": len(self._table)}
        for level in LEVELS:
            report[f"{level}_districts"] = len({row[level] for row in rows})
        return report


# --- Tier 2: geocoded centroid against boundaries ---------------------------


def rank_candidates(geocode: GeocodeResult, boundaries: BoundaryIndex, level: str) -> list[int]:
    """Order overlapping districts at ``level``, best first."""

    containing = set(boundaries.containing(level, geocode.lat, geocode.lng))
    shares: dict[int, float] = {}
    for share in geocode.districts.get(level, []):
        shares[share.district] = max(shares.get(share.district, 0.0), share.proportion)
    candidates = containing | set(shares)
    return sorted(candidates, key=lambda number: (number not in containing, -shares.get(number, 0.0), number))


def split_assignment(ranked: dict[str, list[int]]) -> tuple[DistrictSet, tuple[DistrictSet, ...]]:
    """Build primary and secondary sets from per-level ranked candidates."""

    def pick(level: str, index: int) -> int:
        options = ranked[level]
        return options[index] if index < len(options) else options[0]

    primary = DistrictSet(pick("assembly", 0), pick("senate", 0), pick("congressional", 0))
    depth = max(len(options) for options in ranked.values())
    secondary = tuple(
        DistrictSet(pick("assembly", i), pick("senate", i), pick("congressional", i)) for i in range(1, depth)
    )
    return primary, secondary


class GeocodedBoundaryStrategy:
    name = "geocoded"

    def __init__(self, geocoder: GeocodingClient, boundaries: Optional[BoundaryIndex] = None) -> None:
        self._geocoder = geocoder
        self._boundaries = boundaries if boundaries is not None else BoundaryIndex()

    def lookup(self, zip_code: str) -> Optional[DistrictAssignment]:
        geocode = self._geocoder.geocode_zip(zip_code)
        if geocode.stale:
            log.info("Geocoder unavailable for ZIP %s; skipping stale centroid", zip_code)
            return None
        ranked = {level: rank_candidates(geocode, self._boundaries, level) for level in LEVELS}
        missing = [level for level, options in ranked.items() if not options]
        if missing:
            log.info("No %s boundary data for ZIP %s", ", ".join(missing), zip_code)
            return None

        primary, secondary = split_assignment(ranked)
        return DistrictAssignment(
            zip=zip_code,
            primary=primary,
            secondary=secondary,
            accuracy=Accuracy.MEDIUM,
            source=self.name,
            coordinates=(geocode.lat, geocode.lng),
            city=geocode.city,
            county=geocode.county,
        )


# --- Tier 3: ZIP range heuristics ------------------------------------------

# (low, high, base, step, cap); a step of 0 means ``base`` is used as-is.
_ASSEMBLY_RULES = (
    (90210, 90299, 50, 0, 0),
    (90400, 90499, 50, 0, 0),
    (91100, 91199, 41, 0, 0),
    (90000, 91999, 50, 200, 80),
    (92101, 92115, 78, 0, 0),
    (92000, 92999, 75, 300, 80),
    (93000, 93999, 26, 200, 35),
    (94102, 94124, 17, 0, 0),
    (94000, 94999, 15, 200, 24),
    (95814, 95834, 7, 0, 0),
    (95000, 95999, 5, 200, 12),
    (96000, 96999, 1, 500, 4),
)

_SENATE_RULES = (
    (90210, 90299, 26, 0, 0),
    (90400, 90499, 26, 0, 0),
    (91100, 91199, 25, 0, 0),
    (92000, 92999, 38, 500, 40),
    (94000, 94999, 11, 0, 0),
    (95814, 95834, 6, 0, 0),
)

_CONGRESSIONAL_RULES = (
    (90210, 90299, 30, 0, 0),
    (90400, 90499, 36, 0, 0),
    (91100, 91199, 28, 0, 0),
    (90000, 91999, 28, 300, 44),
    (92000, 92999, 50, 400, 53),
    (94000, 94999, 11, 0, 0),
    (95814, 95834, 7, 0, 0),
    (93000, 93999, 13, 500, 22),
    (95000, 95199, 16, 0, 0),
)


def _apply_rules(rules: Sequence[tuple[int, int, int, int, int]], zip_number: int) -> Optional[int]:
    for low, high, base, step, cap in rules:
        if low <= zip_number <= high:
            return base if not step else min(base + (zip_number - low) // step, cap)
    return None


def _clamp(value: int, upper: int) -> int:
    return min(max(value, 1), upper)


def heuristic_districts(zip_code: str) -> DistrictSet:
    number = int(zip_code)
    assembly = _apply_rules(_ASSEMBLY_RULES, number) or 1
    senate = _apply_rules(_SENATE_RULES, number)
    if senate is None:
        senate = _clamp(-(-assembly // 2), 40)
    congressional = _apply_rules(_CONGRESSIONAL_RULES, number)
    if congressional is None:
        congressional = _clamp((number - 90000) // 1000 + 1, 52)
    return DistrictSet(assembly, senate, congressional)


class HeuristicStrategy:
    name = "heuristic"

    def lookup(self, zip_code: str) -> DistrictAssignment:
        return DistrictAssignment(
            zip=zip_code,
            primary=heuristic_districts(zip_code),
            accuracy=Accuracy.LOW,
            source=self.name,
        )


# --- Resolver ---------------------------------------------------------------


_CACHE_TIERS = {
    Accuracy.HIGH: CacheTier.STANDARD,
    Accuracy.MEDIUM: CacheTier.STANDARD,
    Accuracy.LOW: CacheTier.VOLATILE,
}


@dataclass
class DistrictResolver:
    """Runs resolution strategies in order; never fails for a valid ZIP."""

    strategies: list[ResolutionStrategy] = field(default_factory=list)
    cache: Optional[CacheStore] = None

    def __post_init__(self) -> None:
        self.strategies = list(self.strategies)
        if not any(isinstance(strategy, HeuristicStrategy) for strategy in self.strategies):
            self.strategies.append(HeuristicStrategy())

    def _cache_key(self, zip_code: str) -> str:
        return f"district:{zip_code}"

    def resolve(self, zip_code: Any) -> DistrictAssignment:
        zip5 = normalize_zip(zip_code)
        if self.cache is not None:
            cached = self.cache.get(self._cache_key(zip5))
            if cached is not MISS:
                return cached

        assignment: Optional[DistrictAssignment] = None
        for strategy in self.strategies:
            try:
                assignment = strategy.lookup(zip5)
            except ApiError as exc:
                log.warning("District lookup via %s failed for %s: %s", strategy.name, zip5, exc)
                continue
            if assignment is not None:
                break

        if assignment is None:  # pragma: no cover - heuristic tier always answers
            assignment = HeuristicStrategy().lookup(zip5)
        if assignment.degraded:
            log.info("ZIP %s resolved with %s accuracy via %s", zip5, assignment.accuracy.value, assignment.source)
        if self.cache is not None:
            self.cache.put(self._cache_key(zip5), assignment, tier=_CACHE_TIERS[assignment.accuracy])
        return assignment


def build_resolver(client: Any, boundaries: Optional[BoundaryIndex] = None) -> DistrictResolver:
    """Assemble the default static → geocoded → heuristic resolver."""

    if boundaries is None:
        boundaries = BoundaryIndex.load(config.DISTRICT_BOUNDARIES_PATH)
    if not boundaries:
        log.info("No district boundaries loaded; geocoded lookups rely on overlap shares")
    return DistrictResolver(
        strategies=[
            StaticTableStrategy.from_file(config.STATIC_DISTRICTS_PATH),
            GeocodedBoundaryStrategy(GeocodingClient(client), boundaries),
            HeuristicStrategy(),
        ],
        cache=client.cache,
    )
