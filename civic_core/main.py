"""Command-line entry point: resolve a ZIP and list its representatives."""

from __future__ import annotations

import argparse
import json
import logging
import time
from dataclasses import asdict
from typing import Optional

from civic_core import config
from civic_core.errors import ApiError
from civic_core.services import RepresentativesAdapter, ResilientAPIClient, build_resolver
from civic_core.services.quota import QuotaTracker
from civic_core.services.redis_client import persistence_enabled
from civic_core.services.state_store import RedisQuotaStore


def build_client() -> ResilientAPIClient:
    store = RedisQuotaStore() if persistence_enabled() else None
    return ResilientAPIClient(quota=QuotaTracker(store=store))


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve a ZIP code to its legislative districts.")
    parser.add_argument("zip_code")
    parser.add_argument("--state", default=config.DEFAULT_STATE)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--json", action="store_true", help="print the result as JSON")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    started = time.time()

    client = build_client()
    resolver = build_resolver(client)
    representatives = RepresentativesAdapter(client, resolver)

    try:
        assignment, listing = representatives.for_zip(args.zip_code, state=args.state)
    except ApiError as exc:
        print(f"[error] {exc}")
        return 1

    if args.json:
        report = assignment.to_dict()
        report["representatives"] = [asdict(member) for member in listing.items]
        report["representatives_stale"] = listing.stale
        print(json.dumps(report, indent=2))
        return 0

    primary = assignment.primary
    print(f"[districts] ZIP {assignment.zip} ({assignment.accuracy.value} accuracy via {assignment.source})")
    print(
        f"  assembly {primary.assembly_district}, senate {primary.senate_district}, "
        f"congressional {primary.congressional_district}"
    )
    for alternative in assignment.secondary:
        print(
            f"  also overlaps: assembly {alternative.assembly_district}, senate {alternative.senate_district}, "
            f"congressional {alternative.congressional_district}"
        )
    if assignment.degraded:
        print("  note: district match is approximate")

    if listing.stale:
        print("[representatives] data temporarily unavailable, showing last known information")
    for member in listing.items:
        print(f"[representatives] {member.name} ({member.party or 'unknown party'})")

    for name, stats in client.stats().items():
        print(f"[stats] {name}: {stats}")
    print(f"Total processing time: {time.time() - started:.2f} seconds.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
