"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import docforge`
works consistently in all tests, and provides a factory for documents that
pass every built-in validation rule.
"""

import copy
import sys
from pathlib import Path

import pytest


# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


COMPLETE_DOCUMENT = {
    "metadata": {
        "title": "Team Todo Tracker",
        "description": "A collaborative todo application for small teams to plan, assign and track tasks.",
        "version": "1.0.0",
    },
    "product_overview": {
        "vision": "Make team planning effortless",
        "objectives": ["Reduce missed deadlines", "Centralise task tracking"],
        "success_metrics": ["80% weekly active teams"],
    },
    "functional_requirements": [
        {
            "title": "Create tasks",
            "description": "Users can create tasks with a title and due date",
            "acceptance_criteria": ["Task appears in the list after saving"],
            "priority": "must",
        },
        {
            "title": "Assign tasks",
            "description": "Users can assign a task to a teammate",
            "acceptance_criteria": ["Assignee receives a notification"],
            "priority": "must",
        },
        {
            "title": "Task comments",
            "description": "Team members can discuss a task in comments",
            "acceptance_criteria": ["Comments are shown newest first"],
            "priority": "should",
        },
    ],
    "technical_specifications": {
        "tech_stack": {"backend": {"framework": "FastAPI"}, "database": "PostgreSQL"},
        "architecture": "Single API service with a relational database",
        "system_requirements": {"p95_latency_ms": 300},
    },
    "testing_strategy": "Unit tests for services, end-to-end tests for task flows",
    "user_interface": "Responsive web UI",
    "data_model": "Users, teams, tasks, comments",
    "api_specification": "REST endpoints under /api/v1",
    "security_requirements": "OAuth login, per-team access control",
}


@pytest.fixture
def make_document():
    """Return a deep copy of a document that passes every built-in rule, with overrides applied."""

    def _make(**overrides):
        document = copy.deepcopy(COMPLETE_DOCUMENT)
        for key, value in overrides.items():
            if value is None:
                document.pop(key, None)
            else:
                document[key] = value
        return document

    return _make
