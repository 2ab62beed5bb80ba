"""
Rule-based document validation and quality scoring.

`validate()` runs the built-in rules plus any custom validators against a
deep copy of the document and folds the per-rule results into a
`ValidationReport`:

- errors reported by a warning-severity rule are downgraded to warnings;
- `overall.valid` means no errors (strict mode: no warnings either);
- `completeness` is the fraction of required sections present and non-empty;
- `quality_score` is the weighted mean of the rule pass rate (rules that
  reported nothing) and completeness, clamped to [0, 1];
- `recommendations` are the descriptions of rules that reported something.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional, Set

from docforge.errors import ConfigurationError
from docforge.logging_config import logger
from docforge.models import (
    AnalysisResult,
    ComplexityLevel,
    QualityWeights,
    Severity,
    UserRequest,
    ValidationConfig,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
    ValidationRule,
)
from docforge.settings import settings
from docforge.validation.rules import build_builtin_rules, get_field, is_filled, requirements_of

MIN_INPUT_LENGTH = 10
MAX_INPUT_LENGTH = 5000
KEYWORD_OVERLAP_THRESHOLD = 0.3


def default_config() -> ValidationConfig:
    return ValidationConfig(
        weights=QualityWeights(
            rule_pass_rate=settings.quality_weight_rules,
            completeness=settings.quality_weight_completeness,
        )
    )


def check_config(config: ValidationConfig) -> None:
    if config.min_requirements > config.max_requirements:
        raise ConfigurationError(
            "min_requirements cannot exceed max_requirements",
            details={"min_requirements": config.min_requirements, "max_requirements": config.max_requirements},
        )
    if config.weights.rule_pass_rate + config.weights.completeness <= 0:
        raise ConfigurationError("Quality weights must have a positive total")
    names: Set[str] = set()
    for rule in config.custom_validators:
        if rule.name in names:
            raise ConfigurationError(f"Duplicate custom validator name: {rule.name}")
        names.add(rule.name)


def estimate_effort(document: Any) -> str:
    weeks = max(2.0, len(requirements_of(document)) * 0.5)
    if is_filled(get_field(get_field(document, "technical_specifications"), "tech_stack")):
        weeks *= 1.5
    if weeks <= 4:
        return "2-4 weeks (Small project)"
    if weeks <= 12:
        return "1-3 months (Medium project)"
    if weeks <= 24:
        return "3-6 months (Large project)"
    return "6+ months (Enterprise project)"


def extract_keywords(text: str) -> List[str]:
    cleaned = re.sub(r"[^\w\s]", "", text.lower())
    return [word for word in cleaned.split() if len(word) > 3][:20]


def keyword_overlap(first: List[str], second: List[str]) -> float:
    a, b = set(first), set(second)
    union = a | b
    return len(a & b) / len(union) if union else 0.0


class ValidationEngine:
    def __init__(self, config: Optional[ValidationConfig] = None) -> None:
        self.config = config or default_config()
        check_config(self.config)

    def rules_for(self, config: ValidationConfig) -> List[ValidationRule]:
        builtin = build_builtin_rules(config)
        taken = {rule.name for rule in builtin}
        for rule in config.custom_validators:
            if rule.name in taken:
                raise ConfigurationError(f"Custom validator '{rule.name}' shadows a built-in rule")
        return builtin + list(config.custom_validators)

    def validate(self, document: Any, config: Optional[ValidationConfig] = None) -> ValidationReport:
        cfg = config or self.config
        if config is not None:
            check_config(cfg)

        rules = self.rules_for(cfg)
        sections: Dict[str, ValidationResult] = {}
        all_errors: List[ValidationIssue] = []
        all_warnings: List[ValidationIssue] = []
        recommendations: List[str] = []
        passed = 0

        for rule in rules:
            # Each rule gets its own copy of the document.
            raw = rule.validate(copy.deepcopy(document))
            result = raw if isinstance(raw, ValidationResult) else ValidationResult.model_validate(raw)

            errors = list(result.errors)
            warnings = list(result.warnings)
            if rule.severity == Severity.WARNING:
                warnings = errors + warnings
                errors = []

            valid = not errors and not (cfg.strict_mode and warnings)
            sections[rule.name] = ValidationResult(valid=valid, errors=errors, warnings=warnings)
            all_errors.extend(errors)
            all_warnings.extend(warnings)

            if errors or warnings:
                if rule.description not in recommendations:
                    recommendations.append(rule.description)
            else:
                passed += 1

        required = cfg.required_sections
        if required:
            present = sum(1 for name in required if is_filled(get_field(document, name)))
            completeness = present / len(required)
        else:
            completeness = 1.0

        pass_rate = passed / len(rules) if rules else 1.0
        weights = cfg.weights
        total_weight = weights.rule_pass_rate + weights.completeness
        quality = (weights.rule_pass_rate * pass_rate + weights.completeness * completeness) / total_weight
        quality = min(1.0, max(0.0, quality))

        overall_valid = not all_errors and not (cfg.strict_mode and all_warnings)
        report = ValidationReport(
            overall=ValidationResult(valid=overall_valid, errors=all_errors, warnings=all_warnings),
            sections=sections,
            recommendations=recommendations,
            completeness=completeness,
            quality_score=quality,
            estimated_effort=estimate_effort(document),
        )
        logger.debug(
            "validation: valid=%s quality=%.3f completeness=%.3f errors=%d warnings=%d",
            report.overall.valid,
            report.quality_score,
            report.completeness,
            len(all_errors),
            len(all_warnings),
        )
        return report

    def validate_user_request(self, request: Any) -> ValidationResult:
        """
        Sanity-check an incoming request before it enters the loop.
        """
        if isinstance(request, str):
            request = UserRequest(raw_input=request)
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        if not is_filled(get_field(request, "id")):
            errors.append(ValidationIssue(field="id", message="Request must have an ID", constraint="required"))
        raw_input = get_field(request, "raw_input") or ""
        if not raw_input.strip():
            errors.append(
                ValidationIssue(field="raw_input", message="Request must have input text", constraint="required")
            )
        if not is_filled(get_field(request, "session_id")):
            errors.append(
                ValidationIssue(field="session_id", message="Request must have a session ID", constraint="required")
            )

        if raw_input and len(raw_input) < MIN_INPUT_LENGTH:
            warnings.append(
                ValidationIssue(
                    field="raw_input",
                    message="Input is very short",
                    suggestion="Provide more detailed requirements for better results",
                )
            )
        if len(raw_input) > MAX_INPUT_LENGTH:
            warnings.append(
                ValidationIssue(
                    field="raw_input",
                    message="Input is very long",
                    suggestion="Consider breaking it down into smaller, focused requests",
                )
            )
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def validate_workflow_consistency(
        self,
        request: Any,
        document: Any,
        analysis: Optional[AnalysisResult] = None,
    ) -> ValidationResult:
        """
        Check that the document still answers the request and that its size
        matches the analysed complexity. Only ever produces warnings.
        """
        warnings: List[ValidationIssue] = []
        raw_input = request if isinstance(request, str) else get_field(request, "raw_input")
        description = get_field(get_field(document, "metadata"), "description")

        if is_filled(raw_input) and is_filled(description):
            overlap = keyword_overlap(extract_keywords(raw_input), extract_keywords(str(description)))
            if overlap < KEYWORD_OVERLAP_THRESHOLD:
                warnings.append(
                    ValidationIssue(
                        field="consistency",
                        message="Document may not fully address the original request",
                        suggestion="Review alignment between the request and the generated document",
                    )
                )

        if analysis is not None and get_field(document, "functional_requirements") is not None:
            expected = ComplexityLevel(analysis.complexity).expected_requirements
            actual = len(requirements_of(document))
            if abs(actual - expected) > expected * 0.5:
                warnings.append(
                    ValidationIssue(
                        field="complexity",
                        message="Number of requirements may not match expected complexity",
                        suggestion=f"Expected around {expected} requirements for {analysis.complexity.value} scope",
                    )
                )
        return ValidationResult(valid=True, errors=[], warnings=warnings)


__all__ = [
    "ValidationEngine",
    "check_config",
    "default_config",
    "estimate_effort",
    "extract_keywords",
    "keyword_overlap",
]
