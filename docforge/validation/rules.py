"""
Built-in document rules.

Documents are plain mappings (or objects exposing the same attributes)
with snake_case sections:

    metadata                  {title, description, version}
    product_overview          {vision, objectives, success_metrics}
    functional_requirements   [{title, description, acceptance_criteria, priority}]
    technical_specifications  {tech_stack, architecture, system_requirements}
    testing_strategy, user_interface, data_model, api_specification,
    security_requirements     optional free-form sections

Each rule is a `ValidationRule` whose callable returns a `ValidationResult`.
Rules never mutate the document they are given.
"""

from __future__ import annotations

from typing import Any, List, Optional

from docforge.models import RuleCategory, Severity, ValidationConfig, ValidationIssue, ValidationResult, ValidationRule

OPTIONAL_SECTIONS = (
    ("user_interface", "User Interface"),
    ("data_model", "Data Model"),
    ("api_specification", "API Specification"),
    ("security_requirements", "Security Requirements"),
    ("testing_strategy", "Testing Strategy"),
)

MUST_PRIORITIES = {"must", "must_have", "must-have"}


def get_field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return bool(value)
    return True


def requirements_of(document: Any) -> List[Any]:
    reqs = get_field(document, "functional_requirements")
    return list(reqs) if isinstance(reqs, (list, tuple)) else []


def _error(field: str, message: str, constraint: str = "required") -> ValidationIssue:
    return ValidationIssue(field=field, message=message, constraint=constraint)


def _warning(field: str, message: str, suggestion: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, suggestion=suggestion)


def _result(errors: List[ValidationIssue], warnings: List[ValidationIssue]) -> ValidationResult:
    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def check_required_sections(document: Any, sections: List[str]) -> ValidationResult:
    errors = [
        _error(name, f"Document must have a non-empty '{name}' section")
        for name in sections
        if not is_filled(get_field(document, name))
    ]
    return _result(errors, [])


def check_metadata(document: Any) -> ValidationResult:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    metadata = get_field(document, "metadata")
    if not is_filled(metadata):
        return _result([_error("metadata", "Document must have a metadata section")], [])

    title = get_field(metadata, "title")
    if not is_filled(title):
        errors.append(_error("metadata.title", "Document must have a title"))
    elif len(str(title)) < 5:
        warnings.append(_warning("metadata.title", "Title is very short", "Provide a more descriptive title"))

    description = get_field(metadata, "description")
    if not is_filled(description):
        errors.append(_error("metadata.description", "Document must have a description"))
    elif len(str(description)) < 50:
        warnings.append(
            _warning("metadata.description", "Description is too brief", "Provide a more detailed description")
        )

    if not is_filled(get_field(metadata, "version")):
        warnings.append(
            _warning("metadata.version", "Consider adding version information", "Add version tracking")
        )
    return _result(errors, warnings)


def check_product_overview(document: Any) -> ValidationResult:
    overview = get_field(document, "product_overview")
    if not is_filled(overview):
        return _result([_error("product_overview", "Document must have a product overview section")], [])

    warnings: List[ValidationIssue] = []
    if not is_filled(get_field(overview, "vision")):
        warnings.append(
            _warning("product_overview.vision", "Consider adding product vision", "Define a clear product vision")
        )
    if not is_filled(get_field(overview, "objectives")):
        warnings.append(
            _warning(
                "product_overview.objectives",
                "Consider adding specific objectives",
                "Define measurable product objectives",
            )
        )
    if not is_filled(get_field(overview, "success_metrics")):
        warnings.append(
            _warning(
                "product_overview.success_metrics",
                "Consider adding success metrics",
                "Define how success will be measured",
            )
        )
    return _result([], warnings)


def check_functional_requirements(document: Any, min_count: int, max_count: int) -> ValidationResult:
    requirements = requirements_of(document)
    if not requirements:
        return _result(
            [_error("functional_requirements", "Document must have functional requirements")], []
        )

    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    count = len(requirements)
    if count < min_count:
        warnings.append(
            _warning(
                "functional_requirements.count",
                f"Only {count} requirements found, consider adding more",
                f"Aim for at least {min_count} requirements",
            )
        )
    if count > max_count:
        warnings.append(
            _warning(
                "functional_requirements.count",
                f"{count} requirements may be too many",
                f"Consider consolidating to under {max_count} requirements",
            )
        )

    must_count = 0
    for idx, req in enumerate(requirements):
        title = get_field(req, "title")
        if not is_filled(title):
            errors.append(_error(f"functional_requirements[{idx}].title", "Requirement must have a title"))
        if not is_filled(get_field(req, "description")):
            errors.append(
                _error(f"functional_requirements[{idx}].description", "Requirement must have a description")
            )
        if not is_filled(get_field(req, "acceptance_criteria")):
            warnings.append(
                _warning(
                    f"functional_requirements[{idx}].acceptance_criteria",
                    f"Requirement '{title or idx}' lacks acceptance criteria",
                    "Add specific, testable acceptance criteria",
                )
            )
        if str(get_field(req, "priority") or "").lower() in MUST_PRIORITIES:
            must_count += 1

    if must_count == 0:
        warnings.append(
            _warning(
                "functional_requirements.priorities",
                "No must-have requirements identified",
                "Identify critical requirements as must-have",
            )
        )
    elif must_count == count:
        warnings.append(
            _warning(
                "functional_requirements.priorities",
                "All requirements marked as must-have",
                "Prioritize requirements to identify nice-to-have features",
            )
        )
    return _result(errors, warnings)


def check_technical_specifications(document: Any, require_tech_stack: bool) -> ValidationResult:
    spec = get_field(document, "technical_specifications")
    if not is_filled(spec):
        if require_tech_stack:
            return _result(
                [_error("technical_specifications", "Document must include technical specifications")], []
            )
        return _result([], [])

    warnings: List[ValidationIssue] = []
    if not is_filled(get_field(spec, "tech_stack")):
        warnings.append(
            _warning(
                "technical_specifications.tech_stack",
                "Consider specifying technology stack",
                "Define frontend, backend and database technologies",
            )
        )
    if not is_filled(get_field(spec, "architecture")):
        warnings.append(
            _warning(
                "technical_specifications.architecture",
                "Consider adding architectural overview",
                "Describe system architecture and components",
            )
        )
    if not is_filled(get_field(spec, "system_requirements")):
        warnings.append(
            _warning(
                "technical_specifications.system_requirements",
                "Consider adding performance requirements",
                "Define response time and scalability needs",
            )
        )
    return _result([], warnings)


def check_testing_strategy(document: Any) -> ValidationResult:
    if is_filled(get_field(document, "testing_strategy")):
        return _result([], [])
    return _result([_error("testing_strategy", "Document must define a testing strategy")], [])


def check_consistency(document: Any) -> ValidationResult:
    requirements = requirements_of(document)
    tech_stack = get_field(get_field(document, "technical_specifications"), "tech_stack")
    backend_framework = get_field(get_field(tech_stack, "backend"), "framework")
    warnings: List[ValidationIssue] = []
    if len(requirements) > 10 and not is_filled(backend_framework):
        warnings.append(
            _warning(
                "consistency",
                "Complex requirements may need a more sophisticated tech stack",
                "Name the backend framework for applications of this size",
            )
        )
    return _result([], warnings)


def check_optional_sections(document: Any) -> ValidationResult:
    warnings = [
        _warning(key, f"Consider adding {label} section", f"Define {label.lower()} for completeness")
        for key, label in OPTIONAL_SECTIONS
        if not is_filled(get_field(document, key))
    ]
    return _result([], warnings)


def build_builtin_rules(config: ValidationConfig) -> List[ValidationRule]:
    required = list(config.required_sections)
    return [
        ValidationRule(
            name="required_sections",
            description="Provide every required section: " + ", ".join(required),
            validate=lambda doc: check_required_sections(doc, required),
            severity=Severity.ERROR,
            category=RuleCategory.STRUCTURE,
        ),
        ValidationRule(
            name="metadata",
            description="Give the document a descriptive title, a detailed description and a version",
            validate=check_metadata,
            severity=Severity.ERROR,
            category=RuleCategory.STRUCTURE,
        ),
        ValidationRule(
            name="product_overview",
            description="Describe the product vision, objectives and success metrics",
            validate=check_product_overview,
            severity=Severity.ERROR,
            category=RuleCategory.BUSINESS,
        ),
        ValidationRule(
            name="functional_requirements",
            description=(
                f"List {config.min_requirements} to {config.max_requirements} prioritized functional "
                "requirements, each with a title, description and acceptance criteria"
            ),
            validate=lambda doc: check_functional_requirements(
                doc, config.min_requirements, config.max_requirements
            ),
            severity=Severity.ERROR,
            category=RuleCategory.CONTENT,
        ),
        ValidationRule(
            name="technical_specifications",
            description="Specify the tech stack, architecture and system requirements",
            validate=lambda doc: check_technical_specifications(doc, config.require_tech_stack),
            severity=Severity.ERROR,
            category=RuleCategory.TECHNICAL,
        ),
        ValidationRule(
            name="testing_strategy",
            description="Define a testing strategy",
            validate=check_testing_strategy,
            severity=Severity.ERROR if config.require_testing_strategy else Severity.WARNING,
            category=RuleCategory.TECHNICAL,
        ),
        ValidationRule(
            name="consistency_check",
            description="Match the tech stack to the size of the requirement set",
            validate=check_consistency,
            severity=Severity.WARNING,
            category=RuleCategory.CONTENT,
        ),
        ValidationRule(
            name="optional_sections",
            description="Add user interface, data model, API, security and testing sections",
            validate=check_optional_sections,
            severity=Severity.WARNING,
            category=RuleCategory.STRUCTURE,
        ),
    ]


__all__ = [
    "OPTIONAL_SECTIONS",
    "build_builtin_rules",
    "check_consistency",
    "check_functional_requirements",
    "check_metadata",
    "check_optional_sections",
    "check_product_overview",
    "check_required_sections",
    "check_technical_specifications",
    "check_testing_strategy",
    "get_field",
    "is_filled",
    "requirements_of",
]
