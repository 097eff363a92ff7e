"""Tests for ZIP-to-district resolution."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from civic_core import config
from civic_core.errors import CircuitOpenError, InvalidInputError, InvalidPayloadError
from civic_core.services.boundaries import BoundaryIndex
from civic_core.services.cache import CacheStore
from civic_core.services.districts import (
    Accuracy,
    DistrictResolver,
    DistrictSet,
    GeocodedBoundaryStrategy,
    HeuristicStrategy,
    StaticTableStrategy,
    build_resolver,
    heuristic_districts,
    normalize_zip,
)
from civic_core.services.geocoding import DistrictShare, GeocodeResult, GeocodingClient, normalize_geocode

from conftest import FakeClock, make_response, make_upstream


def _square(level, district, west, south, east, north):
    ring = [[west, south], [east, south], [east, north], [west, north], [west, south]]
    return {
        "type": "Feature",
        "properties": {"level": level, "district": district},
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


BOUNDARIES = BoundaryIndex.from_geojson(
    {
        "type": "FeatureCollection",
        "features": [
            _square("assembly", 44, -119.0, 34.0, -118.0, 35.0),
            _square("senate", 27, -119.0, 34.0, -118.0, 35.0),
            _square("congressional", 32, -119.0, 34.0, -118.5, 35.0),
            _square("congressional", 33, -118.5, 34.0, -118.0, 35.0),
        ],
    }
)


def _geocode(zip_code="91301", lat=34.5, lng=-118.7, districts=None):
    return GeocodeResult(zip=zip_code, lat=lat, lng=lng, city="Agoura Hills", county="Los Angeles", districts=districts or {})


def _geocoder(result=None, error=None):
    geocoder = MagicMock(spec=GeocodingClient)
    if error is not None:
        geocoder.geocode_zip.side_effect = error
    else:
        geocoder.geocode_zip.return_value = result
    return geocoder


def _resolver(geocoder, boundaries=BOUNDARIES, cache=None):
    return DistrictResolver(
        strategies=[
            StaticTableStrategy.from_file(config.STATIC_DISTRICTS_PATH),
            GeocodedBoundaryStrategy(geocoder, boundaries),
            HeuristicStrategy(),
        ],
        cache=cache,
    )


def test_static_table_hit_is_high_accuracy():
    geocoder = _geocoder(error=AssertionError("geocoder must not be called"))
    assignment = _resolver(geocoder).resolve("90210")

    assert assignment.accuracy is Accuracy.HIGH
    assert assignment.secondary == ()
    assert assignment.primary == DistrictSet(50, 26, 30)
    assert assignment.degraded is False


def test_geocoded_point_inside_single_polygons_is_medium():
    assignment = _resolver(_geocoder(_geocode())).resolve("91301")

    assert assignment.accuracy is Accuracy.MEDIUM
    assert assignment.source == "geocoded"
    assert assignment.primary == DistrictSet(44, 27, 32)
    assert assignment.secondary == ()
    assert assignment.coordinates == (34.5, -118.7)
    assert assignment.degraded


def test_overlapping_districts_prefer_containing_polygon_then_share():
    districts = {
        "congressional": [DistrictShare(33, 0.7), DistrictShare(32, 0.3)],
        "senate": [DistrictShare(27, 0.5), DistrictShare(25, 0.5)],
        "assembly": [DistrictShare(45, 0.6), DistrictShare(44, 0.4), DistrictShare(40, 0.6)],
    }
    assignment = _resolver(_geocoder(_geocode(districts=districts))).resolve("91301")

    # Centroid sits in congressional 32 even though 33 covers more of the ZIP.
    assert assignment.primary == DistrictSet(44, 27, 32)
    assert assignment.secondary == (
        DistrictSet(40, 25, 33),
        DistrictSet(45, 27, 32),
    )


def test_share_ranking_without_boundaries_breaks_ties_by_number():
    districts = {
        "congressional": [DistrictShare(12, 0.4), DistrictShare(11, 0.6)],
        "senate": [DistrictShare(9, 0.5), DistrictShare(3, 0.5)],
        "assembly": [DistrictShare(17, 1.0)],
    }
    assignment = _resolver(_geocoder(_geocode(districts=districts)), boundaries=BoundaryIndex()).resolve("94199")

    assert assignment.accuracy is Accuracy.MEDIUM
    assert assignment.primary == DistrictSet(17, 3, 11)
    assert assignment.secondary == (DistrictSet(17, 9, 12),)


def test_resolution_is_deterministic():
    districts = {
        "congressional": [DistrictShare(33, 0.5), DistrictShare(32, 0.5)],
        "senate": [DistrictShare(27, 1.0)],
        "assembly": [DistrictShare(44, 1.0)],
    }
    resolver = _resolver(_geocoder(_geocode(districts=districts)))
    first = resolver.resolve("91301")
    second = resolver.resolve("91301")
    assert first.primary == second.primary
    assert first.secondary == second.secondary


def test_geocoder_failure_degrades_to_low_accuracy():
    geocoder = _geocoder(error=CircuitOpenError("open", upstream="geocoding"))
    assignment = _resolver(geocoder).resolve("91301")

    assert assignment.accuracy is Accuracy.LOW
    assert assignment.source == "heuristic"


def test_missing_boundary_data_degrades_to_low_accuracy():
    assignment = _resolver(_geocoder(_geocode()), boundaries=BoundaryIndex()).resolve("91301")
    assert assignment.accuracy is Accuracy.LOW


def test_open_geocoding_breaker_still_resolves(clock, session, build_client):
    client = build_client(make_upstream("geocoding", base_url="https://geo.example.test/v1.7"))
    breaker = client._breakers["geocoding"]
    for _ in range(3):
        breaker.record_failure()

    resolver = build_resolver(client, boundaries=BOUNDARIES)
    assignment = resolver.resolve("91301")

    assert assignment.accuracy is Accuracy.LOW
    session.get.assert_not_called()


def test_geocoding_through_client_yields_medium(session, build_client):
    session.get.return_value = make_response(
        payload={
            "results": [
                {"accuracy": 0.4, "location": {"lat": 10.0, "lng": 10.0}},
                {
                    "accuracy": 1,
                    "location": {"lat": 34.5, "lng": -118.2},
                    "address_components": {"city": "Calabasas", "county": "Los Angeles County"},
                    "fields": {
                        "congressional_districts": [
                            {"district_number": 33, "proportion": 1, "congress_numbers": [119]},
                            {"district_number": 99, "proportion": 1, "congress_numbers": [118]},
                        ]
                    },
                },
            ]
        }
    )
    client = build_client(make_upstream("geocoding", base_url="https://geo.example.test/v1.7"))

    assignment = build_resolver(client, boundaries=BOUNDARIES).resolve("91302")

    assert assignment.accuracy is Accuracy.MEDIUM
    assert assignment.primary == DistrictSet(44, 27, 33)
    assert assignment.city == "Calabasas"
    assert session.get.call_args.kwargs["params"]["postal_code"] == "91302"


def test_transport_errors_still_resolve(session, build_client):
    session.get.side_effect = requests.ConnectionError("down")
    client = build_client(make_upstream("geocoding", base_url="https://geo.example.test/v1.7"))

    assignment = build_resolver(client, boundaries=BOUNDARIES).resolve("91303")

    assert assignment.accuracy is Accuracy.LOW


@pytest.mark.parametrize("zip_code", ["00501", "10001", "60614", "90001", "92037", "94110", "96150", "99999"])
def test_every_well_formed_zip_resolves(zip_code):
    assignment = _resolver(_geocoder(error=CircuitOpenError("open"))).resolve(zip_code)
    primary = assignment.primary
    assert assignment.zip == zip_code
    assert 1 <= primary.assembly_district <= 80
    assert 1 <= primary.senate_district <= 40
    assert 1 <= primary.congressional_district <= 53


@pytest.mark.parametrize("bad", ["", "9021", "902101", "abcde", "90210-12", None, 3.5])
def test_malformed_zip_is_invalid_input(bad):
    with pytest.raises(InvalidInputError):
        _resolver(_geocoder(_geocode())).resolve(bad)


def test_zip_plus_four_is_normalised():
    assert normalize_zip(" 90210-1234 ") == "90210"
    assert _resolver(_geocoder(_geocode())).resolve("90210-1234").accuracy is Accuracy.HIGH


def test_heuristic_ranges():
    assert heuristic_districts("90250") == DistrictSet(50, 26, 30)
    assert heuristic_districts("94110") == DistrictSet(17, 11, 11)
    assert heuristic_districts("95820") == DistrictSet(7, 6, 7)
    assert heuristic_districts("10001") == DistrictSet(1, 1, 1)


def test_low_accuracy_results_use_shorter_cache_tier():
    clock = FakeClock()
    cache = CacheStore(max_entries=10, tier_ttls={"volatile": 60, "standard": 3600, "durable": 86400}, clock=clock)
    geocoder = _geocoder(error=CircuitOpenError("open"))
    resolver = _resolver(geocoder, cache=cache)

    resolver.resolve("91301")
    resolver.resolve("90210")

    assert cache.peek("district:91301").ttl == 60
    assert cache.peek("district:90210").ttl == 3600
    resolver.resolve("91301")
    assert geocoder.geocode_zip.call_count == 1


def test_static_reverse_lookup_and_coverage():
    table = StaticTableStrategy(
        {
            "90210": {"assembly": 50, "senate": 26, "congressional": 30},
            "90211": {"assembly": 50, "senate": 26, "congressional": 30},
            "94110": {"assembly": 17, "senate": 11, "congressional": 11},
        }
    )
    assert table.zips_for_district("assembly", 50) == ["90210", "90211"]
    assert table.coverage() == {
        "zip_codes": 3,
        "assembly_districts": 2,
        "senate_districts": 2,
        "congressional_districts": 2,
    }
    with pytest.raises(InvalidInputError):
        table.zips_for_district("county", 1)


def test_normalize_geocode_prefers_most_accurate_result():
    result = normalize_geocode(
        {
            "results": [
                {"accuracy": 0.5, "location": {"lat": 1, "lng": 2}},
                {
                    "accuracy": 0.9,
                    "location": {"lat": 3, "lng": 4},
                    "fields": {
                        "state_legislative_districts": {
                            "house": [{"district_number": "44", "proportion": 0.8}],
                            "senate": [{"district_number": "bad"}],
                        }
                    },
                },
            ]
        },
        "91301",
    )
    assert (result.lat, result.lng) == (3.0, 4.0)
    assert result.districts["assembly"] == [DistrictShare(44, 0.8)]
    assert result.districts["senate"] == []


def test_boundary_holes_and_multipolygons():
    outer = [[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]
    hole = [[4, 4], [6, 4], [6, 6], [4, 6], [4, 4]]
    island = [[20, 20], [22, 20], [22, 22], [20, 22], [20, 20]]
    index = BoundaryIndex.from_geojson(
        {
            "features": [
                {
                    "properties": {"level": "senate", "district": 3},
                    "geometry": {"type": "MultiPolygon", "coordinates": [[outer, hole], [island]]},
                },
                {"properties": {"level": "county", "district": 1}, "geometry": {"type": "Polygon", "coordinates": [outer]}},
                {"properties": {"level": "senate"}, "geometry": {"type": "Polygon", "coordinates": [outer]}},
            ]
        }
    )

    assert index.containing("senate", lat=2, lng=2) == [3]
    assert index.containing("senate", lat=5, lng=5) == []
    assert index.containing("senate", lat=21, lng=21) == [3]
    assert index.has_level("senate")
    assert not index.has_level("assembly")


def test_missing_boundary_file_yields_empty_index(tmp_path):
    assert not BoundaryIndex.load(tmp_path / "absent.geojson")
    assert not BoundaryIndex.load(None)


GEOCODE_PAYLOAD = {
    "results": [
        {
            "accuracy": 1,
            "location": {"lat": 34.5, "lng": -118.2},
            "fields": {"congressional_districts": [{"district_number": 33, "proportion": 1}]},
        }
    ]
}


def _geocoding_upstream(**overrides):
    return make_upstream("geocoding", base_url="https://geo.example.test/v1.7", **overrides)


def test_malformed_geocoder_payload_still_resolves(session, build_client):
    payload = {"results": [{"accuracy": 1, "location": {"lat": 34.5, "lng": -118.2}, "fields": {"county": "Los Angeles"}}]}
    session.get.return_value = make_response(payload=payload)
    client = build_client(_geocoding_upstream(max_retries=0))

    assignment = build_resolver(client, boundaries=BOUNDARIES).resolve("91302")

    assert assignment.accuracy is Accuracy.LOW
    assert client.breaker_state("geocoding").failure_count == 1


@pytest.mark.parametrize(
    "section",
    [
        {"address_components": "Calabasas"},
        {"fields": ["cd"]},
        {"fields": {"state_legislative_districts": "none"}},
        {"fields": {"county": "Los Angeles"}},
    ],
)
def test_normalize_geocode_rejects_non_object_sections(section):
    result = {"accuracy": 1, "location": {"lat": 1, "lng": 2}, **section}
    with pytest.raises(InvalidPayloadError):
        normalize_geocode({"results": [result]}, "91301")


def test_stale_geocode_with_open_breaker_is_low_accuracy(session, build_client, clock):
    session.get.return_value = make_response(payload=GEOCODE_PAYLOAD)
    client = build_client(_geocoding_upstream())
    resolver = build_resolver(client, boundaries=BOUNDARIES)
    assert resolver.resolve("91302").accuracy is Accuracy.MEDIUM

    clock.advance(3 * 24 * 3600)
    breaker = client._breakers["geocoding"]
    for _ in range(3):
        breaker.record_failure()

    assignment = resolver.resolve("91302")

    assert assignment.accuracy is Accuracy.LOW
    assert assignment.source == "heuristic"
    assert session.get.call_count == 1


def test_geocoding_client_flags_stale_results(session, build_client, clock):
    session.get.return_value = make_response(payload=GEOCODE_PAYLOAD)
    client = build_client(_geocoding_upstream(max_retries=0))
    geocoder = GeocodingClient(client)
    assert geocoder.geocode_zip("91302").stale is False

    clock.advance(3 * 24 * 3600)
    session.get.side_effect = requests.ConnectionError("down")
    assert geocoder.geocode_zip("91302").stale is True


def test_resolver_leaves_callers_strategy_list_alone():
    strategies = [StaticTableStrategy({})]
    resolver = DistrictResolver(strategies=strategies)

    assert len(strategies) == 1
    assert isinstance(resolver.strategies[-1], HeuristicStrategy)
