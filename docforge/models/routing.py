from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class FallbackStrategy(BaseModel):
    """Try candidates in descending priority order."""

    type: Literal["fallback"] = "fallback"


class CostStrategy(BaseModel):
    """Cheapest estimated request first."""

    type: Literal["cost"] = "cost"
    max_cost_per_request: Optional[float] = Field(
        default=None, description="Drop candidates estimated above this cost", ge=0.0
    )


class PerformanceStrategy(BaseModel):
    """Lowest rolling-average latency first."""

    type: Literal["performance"] = "performance"
    max_latency_ms: Optional[float] = Field(
        default=None, description="Drop candidates averaging above this latency", gt=0.0
    )


class CapabilityStrategy(BaseModel):
    """Only candidates with the required capability flags, in fallback order."""

    type: Literal["capability"] = "capability"
    requires_streaming: bool = False
    requires_function_calling: bool = False


class RoundRobinStrategy(BaseModel):
    """Rotate the starting candidate across successive calls."""

    type: Literal["round_robin"] = "round_robin"


RoutingStrategy = Annotated[
    Union[
        FallbackStrategy,
        CostStrategy,
        PerformanceStrategy,
        CapabilityStrategy,
        RoundRobinStrategy,
    ],
    Field(discriminator="type"),
]


__all__ = [
    "CapabilityStrategy",
    "CostStrategy",
    "FallbackStrategy",
    "PerformanceStrategy",
    "RoundRobinStrategy",
    "RoutingStrategy",
]
