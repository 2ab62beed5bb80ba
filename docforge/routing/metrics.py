"""
Per-candidate call metrics kept by the router.

`LatencyTracker` holds a bounded window of recent latencies per provider
and feeds the performance strategy. `ProviderCallStats` counts outcomes
for `ProviderRouter.get_stats()`.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional

from docforge.models import FailureKind


def latency_percentile(samples: Iterable[float], p: float) -> Optional[float]:
    ordered: List[float] = sorted(samples)
    if not ordered:
        return None
    idx = max(0, min(len(ordered) - 1, int(round(p * (len(ordered) - 1)))))
    return float(ordered[idx])


class LatencyTracker:
    def __init__(self, window: int = 20) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self.window = window
        self._samples: Dict[str, Deque[float]] = {}

    def record(self, provider_id: str, latency_ms: float) -> None:
        samples = self._samples.get(provider_id)
        if samples is None:
            samples = deque(maxlen=self.window)
            self._samples[provider_id] = samples
        samples.append(float(latency_ms))

    def samples(self, provider_id: str) -> List[float]:
        return list(self._samples.get(provider_id, ()))

    def average(self, provider_id: str) -> Optional[float]:
        samples = self._samples.get(provider_id)
        if not samples:
            return None
        return sum(samples) / len(samples)

    def averages(self) -> Dict[str, Optional[float]]:
        return {pid: self.average(pid) for pid in self._samples}

    def reset(self, provider_id: Optional[str] = None) -> None:
        if provider_id is None:
            self._samples.clear()
        else:
            self._samples.pop(provider_id, None)


@dataclass
class ProviderCallStats:
    requests: int = 0
    successes: int = 0
    failures: int = 0
    rate_limited: int = 0
    failures_by_kind: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None

    def record_success(self) -> None:
        self.requests += 1
        self.successes += 1

    def record_failure(self, kind: FailureKind, reason: str) -> None:
        self.requests += 1
        self.failures += 1
        if kind == FailureKind.RATE_LIMIT:
            self.rate_limited += 1
        self.failures_by_kind[kind.value] = self.failures_by_kind.get(kind.value, 0) + 1
        self.last_error = reason

    @property
    def error_rate(self) -> float:
        return self.failures / self.requests if self.requests else 0.0


__all__ = ["LatencyTracker", "ProviderCallStats", "latency_percentile"]
