"""District boundary polygons loaded from GeoJSON."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence


log = logging.getLogger(__name__)

LEVELS = ("assembly", "senate", "congressional")

Ring = Sequence[Sequence[float]]


@dataclass(frozen=True)
class DistrictPolygon:
    level: str
    district: int
    # Each polygon is an exterior ring followed by optional holes, in (lng, lat).
    polygons: tuple[tuple[Ring, ...], ...]

    def contains(self, lat: float, lng: float) -> bool:
        for rings in self.polygons:
            if not rings or not _in_ring(lng, lat, rings[0]):
                continue
            if any(_in_ring(lng, lat, hole) for hole in rings[1:]):
                continue
            return True
        return False


def _in_ring(x: float, y: float, ring: Ring) -> bool:
    inside = False
    count = len(ring)
    if count < 3:
        return False
    j = count - 1
    for i in range(count):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y):
            cross_x = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < cross_x:
                inside = not inside
        j = i
    return inside


class BoundaryIndex:
    """Point-in-polygon lookups over assembly, senate and congressional districts."""

    def __init__(self, districts: Iterable[DistrictPolygon] = ()) -> None:
        self._by_level: dict[str, list[DistrictPolygon]] = {level: [] for level in LEVELS}
        for district in districts:
            self._by_level.setdefault(district.level, []).append(district)
        for entries in self._by_level.values():
            entries.sort(key=lambda item: item.district)

    @classmethod
    def from_geojson(cls, data: dict[str, Any]) -> "BoundaryIndex":
        districts: list[DistrictPolygon] = []
        for feature in data.get("features", []):
            parsed = _parse_feature(feature)
            if parsed is not None:
                districts.append(parsed)
        return cls(districts)

    @classmethod
    def load(cls, path: Optional[Path]) -> "BoundaryIndex":
        if path is None:
            return cls()
        try:
            with Path(path).open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("District boundaries unavailable from %s: %s", path, exc)
            return cls()
        return cls.from_geojson(data)

    def __bool__(self) -> bool:
        return any(self._by_level.values())

    def has_level(self, level: str) -> bool:
        return bool(self._by_level.get(level))

    def containing(self, level: str, lat: float, lng: float) -> list[int]:
        """Return district numbers at ``level`` whose polygons contain the point."""

        return [item.district for item in self._by_level.get(level, []) if item.contains(lat, lng)]


def _parse_feature(feature: Any) -> Optional[DistrictPolygon]:
    if not isinstance(feature, dict):
        return None
    properties = feature.get("properties") or {}
    geometry = feature.get("geometry") or {}
    level = str(properties.get("level", "")).lower()
    try:
        district = int(properties.get("district"))
    except (TypeError, ValueError):
        return None
    if level not in LEVELS:
        return None

    kind = geometry.get("type")
    coordinates = geometry.get("coordinates") or []
    if kind == "Polygon":
        polygons = (tuple(coordinates),)
    elif kind == "MultiPolygon":
        polygons = tuple(tuple(polygon) for polygon in coordinates)
    else:
        log.debug("Skipping %s district %s with geometry %s", level, district, kind)
        return None
    return DistrictPolygon(level=level, district=district, polygons=polygons)
