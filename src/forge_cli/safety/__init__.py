"""Command safety: risk classification, denylist policy and validation.

Example:
    >>> from forge_cli.safety import RiskLevel, classify
    >>> classify("rm -rf ./build").level is RiskLevel.HIGH
    True
"""

from forge_cli.safety.classifier import (
    CRITICAL_PATTERNS,
    RISK_RULES,
    RiskClassifier,
    RiskRule,
    classify,
)
from forge_cli.safety.denylist import Denylist, load_denylist
from forge_cli.safety.models import (
    PlanValidation,
    RiskAssessment,
    RiskLevel,
    ValidationResult,
    ValidationSummary,
)
from forge_cli.safety.validator import Validator, find_shell_operators

__all__ = [
    "CRITICAL_PATTERNS",
    "RISK_RULES",
    "Denylist",
    "PlanValidation",
    "RiskAssessment",
    "RiskClassifier",
    "RiskLevel",
    "RiskRule",
    "ValidationResult",
    "ValidationSummary",
    "Validator",
    "classify",
    "find_shell_operators",
    "load_denylist",
]
