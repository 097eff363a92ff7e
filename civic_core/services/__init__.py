"""Services making up the upstream integration core."""

from .api_client import Fallback, FetchResult, RequestSpec, ResilientAPIClient, Upstream, UpstreamHealth
from .cache import CacheStore, CacheTier
from .circuit_breaker import BreakerStatus, CircuitBreaker
from .districts import Accuracy, DistrictAssignment, DistrictResolver, DistrictSet, build_resolver
from .legislation import BillsAdapter, CommitteesAdapter, RepresentativesAdapter
from .quota import QuotaTracker

__all__ = [
    "Fallback",
    "FetchResult",
    "RequestSpec",
    "ResilientAPIClient",
    "Upstream",
    "UpstreamHealth",
    "CacheStore",
    "CacheTier",
    "BreakerStatus",
    "CircuitBreaker",
    "Accuracy",
    "DistrictAssignment",
    "DistrictResolver",
    "DistrictSet",
    "build_resolver",
    "BillsAdapter",
    "CommitteesAdapter",
    "RepresentativesAdapter",
    "QuotaTracker",
]
