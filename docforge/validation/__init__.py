from .engine import ValidationEngine, estimate_effort
from .rules import OPTIONAL_SECTIONS, build_builtin_rules

__all__ = ["OPTIONAL_SECTIONS", "ValidationEngine", "build_builtin_rules", "estimate_effort"]
