from types import SimpleNamespace

import pytest

from docforge.models import RuleCategory, Severity, ValidationConfig
from docforge.validation.rules import (
    build_builtin_rules,
    check_consistency,
    check_functional_requirements,
    check_metadata,
    check_optional_sections,
    check_product_overview,
    check_technical_specifications,
    check_testing_strategy,
    get_field,
    is_filled,
)


def _req(title="Login", description="Users sign in", criteria=("works",), priority="should"):
    return {
        "title": title,
        "description": description,
        "acceptance_criteria": list(criteria),
        "priority": priority,
    }


@pytest.mark.parametrize(
    "value, expected",
    [(None, False), ("", False), ("  ", False), ([], False), ({}, False), ("x", True), (0, True), ([1], True)],
)
def test_is_filled(value, expected):
    assert is_filled(value) is expected


def test_get_field_reads_mappings_and_attributes():
    assert get_field({"a": 1}, "a") == 1
    assert get_field(SimpleNamespace(a=2), "a") == 2
    assert get_field(None, "a") is None


def test_metadata_short_title_and_description_warn():
    result = check_metadata({"metadata": {"title": "App", "description": "Too short"}})
    assert result.valid is True
    assert {w.field for w in result.warnings} == {"metadata.title", "metadata.description", "metadata.version"}


def test_metadata_missing_fields_are_errors():
    result = check_metadata({"metadata": {"version": "1"}})
    assert result.valid is False
    assert {e.field for e in result.errors} == {"metadata.title", "metadata.description"}
    assert check_metadata({}).errors[0].field == "metadata"


def test_product_overview_suggests_missing_parts():
    result = check_product_overview({"product_overview": {"vision": "Be great"}})
    assert result.valid is True
    assert len(result.warnings) == 2


def test_functional_requirements_per_item_errors():
    doc = {"functional_requirements": [_req(title=""), _req(description=None), _req(criteria=())]}
    result = check_functional_requirements(doc, 3, 50)

    assert {e.field for e in result.errors} == {
        "functional_requirements[0].title",
        "functional_requirements[1].description",
    }
    fields = [w.field for w in result.warnings]
    assert "functional_requirements[2].acceptance_criteria" in fields
    assert "functional_requirements.priorities" in fields


@pytest.mark.parametrize(
    "priorities, message",
    [
        (["should", "nice"], "No must-have requirements identified"),
        (["must", "MUST_HAVE"], "All requirements marked as must-have"),
    ],
)
def test_functional_requirements_priority_balance(priorities, message):
    doc = {"functional_requirements": [_req(priority=p) for p in priorities]}
    result = check_functional_requirements(doc, 1, 50)
    assert [w.message for w in result.warnings] == [message]


def test_functional_requirements_count_bounds():
    doc = {"functional_requirements": [_req(priority="must"), _req()]}
    too_few = check_functional_requirements(doc, 3, 50)
    too_many = check_functional_requirements(doc, 0, 1)
    assert too_few.warnings[0].message.startswith("Only 2 requirements")
    assert too_many.warnings[0].message == "2 requirements may be too many"


def test_technical_specifications_required_only_when_configured():
    assert check_technical_specifications({}, True).valid is False
    assert check_technical_specifications({}, False).has_issues is False
    partial = check_technical_specifications({"technical_specifications": {"tech_stack": "django"}}, True)
    assert partial.valid is True
    assert len(partial.warnings) == 2


def test_testing_strategy_and_optional_sections():
    assert check_testing_strategy({}).valid is False
    assert check_testing_strategy({"testing_strategy": "pytest"}).valid is True
    assert len(check_optional_sections({}).warnings) == 5


def test_consistency_wants_backend_framework_for_large_documents():
    doc = {"functional_requirements": [_req() for _ in range(11)]}
    assert len(check_consistency(doc).warnings) == 1
    doc["technical_specifications"] = {"tech_stack": {"backend": {"framework": "Django"}}}
    assert check_consistency(doc).warnings == []


def test_builtin_rules_follow_config():
    rules = {rule.name: rule for rule in build_builtin_rules(ValidationConfig())}
    assert rules["testing_strategy"].severity == Severity.WARNING
    assert rules["consistency_check"].severity == Severity.WARNING
    assert rules["product_overview"].category == RuleCategory.BUSINESS

    strict = {rule.name: rule for rule in build_builtin_rules(ValidationConfig(require_testing_strategy=True))}
    assert strict["testing_strategy"].severity == Severity.ERROR
