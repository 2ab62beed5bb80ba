from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    ENTERPRISE = "enterprise"

    @property
    def expected_requirements(self) -> int:
        return {"simple": 5, "moderate": 10, "complex": 20, "enterprise": 30}[self.value]


class AnalysisResult(BaseModel):
    """
    Output of the external request analyzer.
    """

    app_type: str = Field(default="web_app")
    features: List[str] = Field(default_factory=list)
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    suggested_stack: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""


__all__ = ["AnalysisResult", "ComplexityLevel"]
