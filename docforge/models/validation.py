from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class RuleCategory(str, Enum):
    STRUCTURE = "structure"
    CONTENT = "content"
    BUSINESS = "business"
    TECHNICAL = "technical"


class ValidationIssue(BaseModel):
    field: str = Field(..., description="Dotted path of the offending field")
    message: str
    constraint: Optional[str] = Field(default=None, description="Violated constraint, for errors")
    suggestion: Optional[str] = Field(default=None, description="How to fix it, for warnings")


class ValidationResult(BaseModel):
    valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        return bool(self.errors or self.warnings)


@dataclass(frozen=True)
class ValidationRule:
    name: str
    description: str
    validate: Callable[[Any], ValidationResult]
    severity: Severity = Severity.WARNING
    category: RuleCategory = RuleCategory.CONTENT


class QualityWeights(BaseModel):
    """
    Weights of the two quality signals. They are normalised by their sum,
    so only the ratio matters.
    """

    rule_pass_rate: float = Field(default=0.6, ge=0.0)
    completeness: float = Field(default=0.4, ge=0.0)


class ValidationConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    strict_mode: bool = Field(default=False, description="Warnings also invalidate the document")
    required_sections: List[str] = Field(
        default_factory=lambda: ["metadata", "product_overview", "functional_requirements"]
    )
    min_requirements: int = Field(default=3, ge=0)
    max_requirements: int = Field(default=50, ge=0)
    require_tech_stack: bool = True
    require_testing_strategy: bool = False
    custom_validators: List[ValidationRule] = Field(default_factory=list)
    weights: QualityWeights = Field(default_factory=QualityWeights)


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall: ValidationResult
    sections: Dict[str, ValidationResult] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    completeness: float = Field(..., ge=0.0, le=1.0)
    quality_score: float = Field(..., ge=0.0, le=1.0)
    estimated_effort: str = ""


__all__ = [
    "QualityWeights",
    "RuleCategory",
    "Severity",
    "ValidationConfig",
    "ValidationIssue",
    "ValidationReport",
    "ValidationResult",
    "ValidationRule",
]
