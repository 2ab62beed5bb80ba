import pytest

from docforge.models import (
    CapabilityStrategy,
    CostStrategy,
    FailureKind,
    FallbackStrategy,
    PerformanceStrategy,
    Priority,
    ProviderCapabilities,
    ProviderConfig,
    RoundRobinStrategy,
)
from docforge.routing.strategies import (
    by_priority,
    estimate_request_cost,
    order_by_cost,
    order_by_performance,
    order_round_robin,
    plan_route,
)


def _cand(pid, priority=Priority.SHOULD, **kwargs):
    return ProviderConfig(provider_id=pid, model="m", priority=priority, **kwargs)


def _ids(configs):
    return [c.provider_id for c in configs]


def test_by_priority_is_stable_within_a_tier():
    candidates = [
        _cand("nice", Priority.NICE),
        _cand("should-1"),
        _cand("must", Priority.MUST),
        _cand("should-2"),
    ]
    assert _ids(by_priority(candidates)) == ["must", "should-1", "should-2", "nice"]


def test_fallback_plan_has_no_rejections():
    plan = plan_route(FallbackStrategy(), [_cand("b", Priority.NICE), _cand("a", Priority.MUST)])
    assert _ids(plan.ordered) == ["a", "b"]
    assert plan.rejected == []


def test_estimate_request_cost_uses_full_completion_budget():
    cand = _cand("a", cost_input=0.001, cost_output=0.002, max_tokens=1000)
    assert estimate_request_cost(cand, prompt_tokens=100) == pytest.approx(0.1 + 2.0)


def test_cost_orders_ascending_and_rejects_over_limit():
    cheap = _cand("cheap", cost_output=0.0001, max_tokens=1000)
    mid = _cand("mid", cost_output=0.0005, max_tokens=1000)
    pricey = _cand("pricey", cost_output=0.01, max_tokens=1000)

    plan = order_by_cost([pricey, mid, cheap], CostStrategy(max_cost_per_request=1.0), prompt_tokens=10)

    assert _ids(plan.ordered) == ["cheap", "mid"]
    assert len(plan.rejected) == 1
    rejected = plan.rejected[0]
    assert rejected.provider_id == "pricey"
    assert rejected.kind == FailureKind.CONSTRAINT
    assert rejected.attempts == 0


def test_cost_without_limit_keeps_everyone():
    plan = order_by_cost([_cand("a", cost_input=1.0), _cand("b")], CostStrategy(), prompt_tokens=5)
    assert _ids(plan.ordered) == ["b", "a"]


def test_cost_prefers_per_candidate_token_estimates():
    a = _cand("a", cost_input=1.0, cost_output=0.0)
    b = _cand("b", cost_input=2.0, cost_output=0.0)
    c = _cand("c", cost_input=3.0, cost_output=0.0)

    plan = plan_route(
        CostStrategy(), [a, b, c], prompt_tokens=10, token_estimates={"a": 1000, "b": 1}
    )

    # c has no estimate of its own and is priced at prompt_tokens: 30.
    assert _ids(plan.ordered) == ["b", "c", "a"]


def test_performance_puts_unmeasured_last_in_priority_order():
    candidates = [
        _cand("new-nice", Priority.NICE),
        _cand("slow"),
        _cand("new-must", Priority.MUST),
        _cand("fast"),
    ]
    plan = order_by_performance(
        candidates, PerformanceStrategy(), {"slow": 300.0, "fast": 40.0}
    )
    assert _ids(plan.ordered) == ["fast", "slow", "new-must", "new-nice"]


def test_performance_rejects_candidates_over_latency_ceiling():
    plan = order_by_performance(
        [_cand("slow"), _cand("fast")],
        PerformanceStrategy(max_latency_ms=100),
        {"slow": 300.0, "fast": 40.0},
    )
    assert _ids(plan.ordered) == ["fast"]
    assert [r.provider_id for r in plan.rejected] == ["slow"]


def test_capability_keeps_unknown_candidates_and_drops_missing_flags():
    plan = plan_route(
        CapabilityStrategy(requires_streaming=True),
        [_cand("batch", Priority.MUST), _cand("stream"), _cand("unknown", Priority.NICE)],
        capabilities={
            "batch": ProviderCapabilities(supports_streaming=False),
            "stream": ProviderCapabilities(supports_streaming=True),
        },
    )
    assert _ids(plan.ordered) == ["stream", "unknown"]
    assert "streaming" in plan.rejected[0].reason


@pytest.mark.parametrize(
    "cursor, expected",
    [
        (0, ["a", "b", "c"]),
        (1, ["b", "c", "a"]),
        (5, ["c", "a", "b"]),
    ],
)
def test_round_robin_rotation(cursor, expected):
    plan = order_round_robin([_cand("c"), _cand("a"), _cand("b")], RoundRobinStrategy(), cursor)
    assert _ids(plan.ordered) == expected


def test_round_robin_with_no_candidates():
    assert order_round_robin([], RoundRobinStrategy(), 3).ordered == []


def test_unknown_strategy_object_is_rejected():
    with pytest.raises(TypeError):
        plan_route(object(), [_cand("a")])
