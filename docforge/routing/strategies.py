"""
Candidate ordering for each routing strategy.

Every function here is pure: it receives the enabled candidates plus
whatever live data the strategy needs (latency averages, capabilities,
round-robin cursor) and returns a `RoutingPlan` with the attempt order
and the candidates rejected by strategy constraints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from docforge.models import (
    CandidateFailure,
    CapabilityStrategy,
    CostStrategy,
    FailureKind,
    FallbackStrategy,
    PerformanceStrategy,
    ProviderCapabilities,
    ProviderConfig,
    RoundRobinStrategy,
)


@dataclass
class RoutingPlan:
    ordered: List[ProviderConfig]
    rejected: List[CandidateFailure] = field(default_factory=list)


def _rejection(candidate: ProviderConfig, reason: str) -> CandidateFailure:
    return CandidateFailure(
        provider_id=candidate.provider_id,
        kind=FailureKind.CONSTRAINT,
        reason=reason,
        attempts=0,
    )


def by_priority(candidates: Sequence[ProviderConfig]) -> List[ProviderConfig]:
    # sorted() is stable, so declaration order is kept within a tier.
    return sorted(candidates, key=lambda c: c.priority.rank, reverse=True)


def estimate_request_cost(candidate: ProviderConfig, prompt_tokens: int) -> float:
    """
    Upper bound on what one request costs: the prompt plus a full
    completion budget.
    """
    return prompt_tokens * candidate.cost_input + candidate.max_tokens * candidate.cost_output


def order_fallback(candidates: Sequence[ProviderConfig], strategy: Optional[FallbackStrategy] = None) -> RoutingPlan:
    return RoutingPlan(ordered=by_priority(candidates))


def order_by_cost(
    candidates: Sequence[ProviderConfig],
    strategy: CostStrategy,
    prompt_tokens: int,
    token_estimates: Optional[Mapping[str, int]] = None,
) -> RoutingPlan:
    """
    Cheapest first. `token_estimates` holds each candidate's own prompt
    size estimate; `prompt_tokens` covers candidates missing from it.
    """
    estimates = token_estimates or {}
    plan = RoutingPlan(ordered=[])
    priced = []
    for cand in candidates:
        cost = estimate_request_cost(cand, estimates.get(cand.provider_id, prompt_tokens))
        if strategy.max_cost_per_request is not None and cost > strategy.max_cost_per_request:
            plan.rejected.append(
                _rejection(
                    cand,
                    f"estimated cost {cost:.6f} exceeds limit {strategy.max_cost_per_request:.6f}",
                )
            )
            continue
        priced.append((cost, cand))
    priced.sort(key=lambda item: item[0])
    plan.ordered = [cand for _, cand in priced]
    return plan


def order_by_performance(
    candidates: Sequence[ProviderConfig],
    strategy: PerformanceStrategy,
    latencies: Mapping[str, Optional[float]],
) -> RoutingPlan:
    """
    Measured candidates come first, fastest average first; candidates
    with no latency samples yet follow in priority order.
    """
    plan = RoutingPlan(ordered=[])
    measured = []
    unmeasured: List[ProviderConfig] = []
    for cand in candidates:
        avg = latencies.get(cand.provider_id)
        if avg is None:
            unmeasured.append(cand)
            continue
        if strategy.max_latency_ms is not None and avg > strategy.max_latency_ms:
            plan.rejected.append(
                _rejection(cand, f"average latency {avg:.0f}ms exceeds {strategy.max_latency_ms:.0f}ms")
            )
            continue
        measured.append((avg, cand))
    measured.sort(key=lambda item: item[0])
    plan.ordered = [cand for _, cand in measured] + by_priority(unmeasured)
    return plan


def order_by_capability(
    candidates: Sequence[ProviderConfig],
    strategy: CapabilityStrategy,
    capabilities: Mapping[str, ProviderCapabilities],
) -> RoutingPlan:
    plan = RoutingPlan(ordered=[])
    eligible: List[ProviderConfig] = []
    for cand in candidates:
        caps = capabilities.get(cand.provider_id)
        if caps is None:
            # No adapter to ask; the router reports it when attempted.
            eligible.append(cand)
            continue
        missing = []
        if strategy.requires_streaming and not caps.supports_streaming:
            missing.append("streaming")
        if strategy.requires_function_calling and not caps.supports_function_calling:
            missing.append("function_calling")
        if missing:
            plan.rejected.append(_rejection(cand, "missing capabilities: " + ", ".join(missing)))
            continue
        eligible.append(cand)
    plan.ordered = by_priority(eligible)
    return plan


def order_round_robin(
    candidates: Sequence[ProviderConfig], strategy: Optional[RoundRobinStrategy], cursor: int
) -> RoutingPlan:
    ordered = sorted(candidates, key=lambda c: c.provider_id)
    if not ordered:
        return RoutingPlan(ordered=[])
    start = cursor % len(ordered)
    return RoutingPlan(ordered=ordered[start:] + ordered[:start])


def plan_route(
    strategy,
    candidates: Sequence[ProviderConfig],
    *,
    prompt_tokens: int = 0,
    token_estimates: Optional[Mapping[str, int]] = None,
    latencies: Optional[Mapping[str, Optional[float]]] = None,
    capabilities: Optional[Mapping[str, ProviderCapabilities]] = None,
    cursor: int = 0,
) -> RoutingPlan:
    """
    Dispatch on the strategy variant.
    """
    if isinstance(strategy, FallbackStrategy):
        return order_fallback(candidates, strategy)
    if isinstance(strategy, CostStrategy):
        return order_by_cost(candidates, strategy, prompt_tokens, token_estimates)
    if isinstance(strategy, PerformanceStrategy):
        return order_by_performance(candidates, strategy, latencies or {})
    if isinstance(strategy, CapabilityStrategy):
        return order_by_capability(candidates, strategy, capabilities or {})
    if isinstance(strategy, RoundRobinStrategy):
        return order_round_robin(candidates, strategy, cursor)
    raise TypeError(f"Unsupported routing strategy: {strategy!r}")


__all__ = [
    "RoutingPlan",
    "by_priority",
    "estimate_request_cost",
    "order_by_capability",
    "order_by_cost",
    "order_by_performance",
    "order_fallback",
    "order_round_robin",
    "plan_route",
]
