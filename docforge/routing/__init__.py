from .error_classifier import classify_failure
from .metrics import LatencyTracker, ProviderCallStats
from .strategies import RoutingPlan, estimate_request_cost, plan_route
from .router import ProviderRouter, build_cache_key, coerce_strategy

__all__ = [
    "LatencyTracker",
    "ProviderCallStats",
    "ProviderRouter",
    "RoutingPlan",
    "build_cache_key",
    "classify_failure",
    "coerce_strategy",
    "estimate_request_cost",
    "plan_route",
]
