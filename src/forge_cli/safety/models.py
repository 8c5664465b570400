"""Data models for command risk classification and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from forge_cli.planning.plan import Plan


class RiskLevel(str, Enum):
    """Ordinal risk of a command: none < low < medium < high."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Position of this level in the ordering."""
        return _RANKS[self]

    @classmethod
    def parse(cls, value: "RiskLevel | str | None", default: "RiskLevel | None" = None) -> "RiskLevel":
        """Parse a level leniently.

        Unknown or missing values map to ``default`` (LOW when not given).
        """
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return default if default is not None else cls.LOW

    @classmethod
    def highest(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Return the maximum level, NONE for an empty iterable."""
        return max(levels, key=lambda level: level.rank, default=cls.NONE)


_RANKS = {
    RiskLevel.NONE: 0,
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
}


@dataclass(frozen=True)
class RiskAssessment:
    """Result of classifying one command.

    Attributes:
        level: Highest level reached by any rule.
        warnings: Warnings contributed by the rules, in rule order.
        critical_matches: Warnings from the force-high pattern table only.
    """

    level: RiskLevel = RiskLevel.NONE
    warnings: tuple[str, ...] = ()
    critical_matches: tuple[str, ...] = ()

    @property
    def is_critical(self) -> bool:
        """Whether any force-high pattern matched."""
        return bool(self.critical_matches)


@dataclass
class ValidationResult:
    """Verdict for a single step.

    ``allowed`` answers "may this run at all"; ``risk_level`` and
    ``requires_confirmation`` answer "should a human approve it". The two are
    independent: a step can be allowed and still high risk.
    """

    step_id: str
    command: str
    allowed: bool = True
    risk_level: RiskLevel = RiskLevel.LOW
    warnings: list[str] = field(default_factory=list)
    blocked_reasons: list[str] = field(default_factory=list)
    requires_confirmation: bool = False
    suggestions: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def is_blocked(self) -> bool:
        return not self.allowed

    @property
    def is_high_risk(self) -> bool:
        return self.risk_level is RiskLevel.HIGH

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "stepId": self.step_id,
            "command": self.command,
            "allowed": self.allowed,
            "riskLevel": self.risk_level.value,
            "warnings": list(self.warnings),
            "blockedReasons": list(self.blocked_reasons),
            "requiresConfirmation": self.requires_confirmation,
            "suggestions": list(self.suggestions),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ValidationSummary:
    """Counts over the step results of one plan."""

    total_steps: int
    blocked_steps: int
    total_warnings: int
    high_risk_steps: int

    @property
    def overall_safe(self) -> bool:
        return self.blocked_steps == 0 and self.high_risk_steps == 0

    @classmethod
    def from_results(cls, results: Iterable[ValidationResult]) -> "ValidationSummary":
        results = list(results)
        return cls(
            total_steps=len(results),
            blocked_steps=sum(1 for r in results if not r.allowed),
            total_warnings=sum(len(r.warnings) for r in results),
            high_risk_steps=sum(1 for r in results if r.is_high_risk),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSteps": self.total_steps,
            "blockedSteps": self.blocked_steps,
            "totalWarnings": self.total_warnings,
            "highRiskSteps": self.high_risk_steps,
            "overallSafe": self.overall_safe,
        }


@dataclass(frozen=True)
class PlanValidation:
    """Aggregate verdict for a whole plan.

    Attributes:
        allowed: True only if every step is allowed.
        risk_level: Maximum risk level across the step results.
        step_results: One ValidationResult per step, in plan order.
        summary: Counts of blocked, warning and high-risk steps.
    """

    allowed: bool
    risk_level: RiskLevel
    step_results: tuple[ValidationResult, ...]
    summary: ValidationSummary

    @classmethod
    def from_results(cls, results: Iterable[ValidationResult]) -> "PlanValidation":
        results = tuple(results)
        return cls(
            allowed=all(r.allowed for r in results),
            risk_level=RiskLevel.highest(r.risk_level for r in results),
            step_results=results,
            summary=ValidationSummary.from_results(results),
        )

    def result_for(self, step_id: str) -> ValidationResult | None:
        """Look up the result of a step by id."""
        for result in self.step_results:
            if result.step_id == step_id:
                return result
        return None

    def reconcile(self, plan: "Plan") -> "Plan":
        """Return a plan whose risk level is at least this validation's level.

        The original plan is left untouched.
        """
        level = RiskLevel.highest((plan.risk_level, self.risk_level))
        if level is plan.risk_level:
            return plan
        return plan.with_risk_level(level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "riskLevel": self.risk_level.value,
            "stepResults": [r.to_dict() for r in self.step_results],
            "summary": self.summary.to_dict(),
        }
