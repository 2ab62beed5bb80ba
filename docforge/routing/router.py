"""
Multi-backend request routing with failure recovery.

`ProviderRouter.dispatch` orders the enabled candidates with the chosen
strategy, then tries them one by one:

- a candidate with no registered adapter, or whose adapter reports it is
  unavailable, counts as a failure and the router advances;
- every generate call runs under the per-request timeout;
- rate-limited calls are retried on the same candidate with exponential
  backoff before advancing;
- auth, network, timeout and capability errors advance immediately.

When every candidate fails the router raises `AllProvidersExhausted`
listing each candidate's reason, including candidates rejected by the
strategy's own constraints.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import TypeAdapter, ValidationError

from docforge.errors import AllProvidersExhausted, ConfigurationError, NotFound, ProviderFailure
from docforge.logging_config import logger
from docforge.models import (
    BackendResponse,
    CandidateFailure,
    ChatMessage,
    CostStrategy,
    FailureKind,
    FallbackStrategy,
    ProviderConfig,
    RoundRobinStrategy,
    RoutingStrategy,
    TaskType,
)
from docforge.provider.base import BackendAdapter, MessageLike, coerce_messages, estimate_tokens
from docforge.routing.error_classifier import classify_failure
from docforge.routing.metrics import LatencyTracker, ProviderCallStats, latency_percentile
from docforge.routing.strategies import plan_route
from docforge.settings import settings
from docforge.storage.response_cache import ResponseCache

_strategy_adapter: TypeAdapter = TypeAdapter(RoutingStrategy)

SleepFunc = Callable[[float], Awaitable[None]]


def coerce_strategy(strategy: Any):
    if strategy is None:
        return FallbackStrategy()
    if isinstance(strategy, str):
        strategy = {"type": strategy}
    try:
        return _strategy_adapter.validate_python(strategy)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid routing strategy", details={"errors": exc.errors(include_url=False)}
        ) from exc


def build_cache_key(
    task_type: TaskType,
    messages: Sequence[ChatMessage],
    options: Optional[Mapping[str, Any]],
    provider_ids: Iterable[str] = (),
) -> str:
    return json.dumps(
        {
            "task_type": task_type.value,
            "messages": [m.model_dump(exclude_none=True) for m in messages],
            "options": dict(options or {}),
            "providers": sorted(provider_ids),
        },
        sort_keys=True,
        ensure_ascii=False,
        default=str,
    )


class ProviderRouter:
    def __init__(
        self,
        adapters: Union[Mapping[str, BackendAdapter], Iterable[BackendAdapter], None] = None,
        *,
        cache: Optional[ResponseCache] = None,
        cache_ttl: Optional[float] = None,
        request_timeout: Optional[float] = None,
        rate_limit_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        latency_window: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._adapters: Dict[str, BackendAdapter] = {}
        if isinstance(adapters, Mapping):
            self._adapters.update(adapters)
        elif adapters is not None:
            for adapter in adapters:
                self.register_adapter(adapter)

        self.cache = cache
        self.cache_ttl = cache_ttl
        self.request_timeout = (
            request_timeout if request_timeout is not None else settings.router_request_timeout
        )
        self.rate_limit_retries = (
            rate_limit_retries if rate_limit_retries is not None else settings.router_rate_limit_retries
        )
        self.backoff_base = backoff_base if backoff_base is not None else settings.router_backoff_base
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.rate_limit_retries < 0 or self.backoff_base < 0:
            raise ConfigurationError("rate_limit_retries and backoff_base must be non-negative")

        self.latency = LatencyTracker(latency_window or settings.router_latency_window)
        self._stats: Dict[str, ProviderCallStats] = {}
        self._enabled_overrides: Dict[str, bool] = {}
        self._rr_cursor = 0
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Adapter registry
    # ------------------------------------------------------------------

    def register_adapter(self, adapter: BackendAdapter) -> None:
        self._adapters[adapter.provider_id] = adapter

    def unregister_adapter(self, provider_id: str) -> Optional[BackendAdapter]:
        return self._adapters.pop(provider_id, None)

    def get_adapter(self, provider_id: str) -> BackendAdapter:
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise NotFound(f"Provider '{provider_id}' is not registered", details={"provider_id": provider_id})
        return adapter

    def set_provider_enabled(self, provider_id: str, enabled: Optional[bool]) -> None:
        """
        Override a candidate's `enabled` flag at runtime; None clears the
        override so the candidate's own config applies again.
        """
        self.get_adapter(provider_id)
        if enabled is None:
            self._enabled_overrides.pop(provider_id, None)
        else:
            self._enabled_overrides[provider_id] = bool(enabled)
        logger.info("router: provider %s enabled override=%s", provider_id, enabled)

    def is_enabled(self, candidate: ProviderConfig) -> bool:
        return self._enabled_overrides.get(candidate.provider_id, candidate.enabled)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        messages: Sequence[MessageLike],
        task_type: Union[TaskType, str],
        strategy: Any = None,
        candidates: Sequence[ProviderConfig] = (),
        options: Optional[Dict[str, Any]] = None,
        *,
        use_cache: bool = True,
    ) -> BackendResponse:
        """
        Route one request. With `use_cache=False` a cached response is not
        served, but the fresh response still replaces the cached one.
        """
        msgs = coerce_messages(messages)
        if not msgs:
            raise ConfigurationError("dispatch requires at least one message")
        try:
            task = TaskType(task_type)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown task type: {task_type!r}") from exc
        route = coerce_strategy(strategy)
        enabled = [c for c in candidates if self.is_enabled(c)]

        # The enabled candidate ids are part of the key.
        cache_key: Optional[str] = None
        if self.cache is not None and enabled:
            cache_key = build_cache_key(task, msgs, options, [c.provider_id for c in enabled])
            cached = await self.cache.get(cache_key) if use_cache else None
            if cached is not None:
                logger.debug("router: cache hit for task %s", task.value)
                return BackendResponse.model_validate(cached).model_copy(update={"cache_hit": True})

        token_estimates = self._token_estimates(enabled, msgs) if isinstance(route, CostStrategy) else None
        plan = plan_route(
            route,
            enabled,
            prompt_tokens=estimate_tokens(msgs),
            token_estimates=token_estimates,
            latencies=self.latency.averages(),
            capabilities={pid: adapter.capabilities() for pid, adapter in self._adapters.items()},
            cursor=self._rr_cursor,
        )
        if isinstance(route, RoundRobinStrategy):
            self._rr_cursor += 1

        failures: List[CandidateFailure] = []
        for candidate in plan.ordered:
            outcome = await self._attempt(candidate, msgs, options)
            if isinstance(outcome, CandidateFailure):
                failures.append(outcome)
                continue

            response = outcome.model_copy(update={"failed_attempts": list(failures)})
            if self.cache is not None and cache_key is not None:
                await self.cache.set(
                    cache_key,
                    response.model_dump(mode="json", exclude={"failed_attempts", "cache_hit"}),
                    ttl=self.cache_ttl,
                )
            logger.info(
                "router: task %s served by %s (strategy=%s, failed_before=%d, latency=%.1fms)",
                task.value,
                candidate.provider_id,
                route.type,
                len(failures),
                response.latency_ms or 0.0,
            )
            return response

        failures.extend(plan.rejected)
        logger.error(
            "router: all %d candidates failed for task %s (strategy=%s)",
            len(failures),
            task.value,
            route.type,
        )
        raise AllProvidersExhausted(failures, task_type=task.value)

    def _token_estimates(
        self, candidates: Sequence[ProviderConfig], messages: List[ChatMessage]
    ) -> Dict[str, int]:
        estimates: Dict[str, int] = {}
        for candidate in candidates:
            adapter = self._adapters.get(candidate.provider_id)
            if adapter is not None:
                estimates[candidate.provider_id] = adapter.estimate_tokens(messages)
        return estimates

    def backoff_delay(self, attempt: int, failure: Optional[ProviderFailure] = None) -> float:
        delay = self.backoff_base * (2 ** attempt)
        retry_after = getattr(failure, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    async def _attempt(
        self,
        candidate: ProviderConfig,
        messages: List[ChatMessage],
        options: Optional[Dict[str, Any]],
    ) -> Union[BackendResponse, CandidateFailure]:
        provider_id = candidate.provider_id
        stats = self._stats.setdefault(provider_id, ProviderCallStats())

        adapter = self._adapters.get(provider_id)
        if adapter is None:
            reason = f"No adapter registered for provider '{provider_id}'"
            stats.record_failure(FailureKind.UNAVAILABLE, reason)
            logger.warning("router: %s", reason)
            return CandidateFailure(
                provider_id=provider_id, kind=FailureKind.UNAVAILABLE, reason=reason, attempts=0
            )

        try:
            available = await asyncio.wait_for(adapter.is_available(), timeout=self.request_timeout)
        except Exception as exc:
            failure = classify_failure(exc, provider_id)
            stats.record_failure(failure.kind, failure.message)
            return failure.to_failure(provider_id, attempts=0)
        if not available:
            reason = f"Provider '{provider_id}' reports unavailable"
            stats.record_failure(FailureKind.UNAVAILABLE, reason)
            logger.warning("router: %s", reason)
            return CandidateFailure(
                provider_id=provider_id, kind=FailureKind.UNAVAILABLE, reason=reason, attempts=0
            )

        request_options = adapter.request_options(options)
        attempts = 0
        while True:
            attempts += 1
            started = self._clock()
            try:
                response = await asyncio.wait_for(
                    adapter.generate(messages, request_options), timeout=self.request_timeout
                )
            except Exception as exc:
                failure = classify_failure(exc, provider_id)
                stats.record_failure(failure.kind, failure.message)
                if failure.kind == FailureKind.RATE_LIMIT and attempts <= self.rate_limit_retries:
                    delay = self.backoff_delay(attempts - 1, failure)
                    logger.warning(
                        "router: provider %s rate limited (attempt %d/%d), retrying in %.2fs",
                        provider_id,
                        attempts,
                        self.rate_limit_retries + 1,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.warning(
                    "router: provider %s failed (%s): %s",
                    provider_id,
                    failure.kind.value,
                    failure.message,
                )
                return failure.to_failure(provider_id, attempts=attempts)

            latency_ms = (self._clock() - started) * 1000.0
            self.latency.record(provider_id, latency_ms)
            stats.record_success()
            updates: Dict[str, Any] = {"provider_id": provider_id}
            if response.latency_ms is None:
                updates["latency_ms"] = latency_ms
            if not response.cost:
                updates["cost"] = adapter.estimate_cost(response.usage)
            return response.model_copy(update=updates)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        provider_ids = set(self._stats) | set(self._adapters)
        result: Dict[str, Dict[str, Any]] = {}
        for pid in sorted(provider_ids):
            stats = self._stats.get(pid, ProviderCallStats())
            samples = self.latency.samples(pid)
            result[pid] = {
                "requests": stats.requests,
                "successes": stats.successes,
                "failures": stats.failures,
                "rate_limited": stats.rate_limited,
                "error_rate": stats.error_rate,
                "failures_by_kind": dict(stats.failures_by_kind),
                "last_error": stats.last_error,
                "avg_latency_ms": self.latency.average(pid),
                "latency_p95_ms": latency_percentile(samples, 0.95),
                "enabled_override": self._enabled_overrides.get(pid),
            }
        return result

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


__all__ = ["ProviderRouter", "build_cache_key", "coerce_strategy"]
