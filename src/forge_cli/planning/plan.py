"""Plan and Step models.

Both are frozen: refining a plan or raising its risk level produces a new
Plan. The JSON form uses the camelCase keys of the planning prompt contract.

Example:
    >>> plan = Plan.from_dict({
    ...     "intent": "List files",
    ...     "steps": [{"id": "step-1", "description": "List", "command": "ls -la"}],
    ... })
    >>> plan.steps[0].timeout_ms is None
    True
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from forge_cli.safety.models import RiskLevel

NO_ROLLBACK = "No automatic rollback available"


def _new_plan_id() -> str:
    return f"plan-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Step:
    """One shell command with its risk metadata.

    Attributes:
        id: Identifier, unique within its plan.
        description: Human-readable description.
        command: Shell command to run.
        requires_confirmation: Whether the planner asked for confirmation.
        risk_level: Risk declared by the planner.
        working_directory: Directory to run in; None selects the sandbox root.
        timeout_ms: Subprocess timeout in milliseconds; None uses the sandbox default.
        retry_count: Number of times the step has been retried.
    """

    id: str
    description: str
    command: str
    requires_confirmation: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    working_directory: Path | None = None
    timeout_ms: int | None = None
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "command": self.command,
            "requiresConfirmation": self.requires_confirmation,
            "riskLevel": self.risk_level.value,
            "workingDirectory": str(self.working_directory) if self.working_directory else None,
            "timeout": self.timeout_ms,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        working_directory = data.get("workingDirectory", data.get("working_directory"))
        requires_confirmation = data.get("requiresConfirmation", data.get("requires_confirmation"))
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            command=str(data["command"]),
            requires_confirmation=bool(requires_confirmation) if requires_confirmation is not None else False,
            risk_level=RiskLevel.parse(data.get("riskLevel", data.get("risk_level"))),
            working_directory=Path(working_directory).expanduser() if working_directory else None,
            timeout_ms=int(data["timeout"]) if data.get("timeout") else None,
            retry_count=int(data.get("retryCount", data.get("retry_count")) or 0),
        )


@dataclass(frozen=True)
class Plan:
    """An ordered set of steps derived from a natural-language request.

    ``risk_level`` is not checked against the steps at construction; the
    validator reconciles it (see ``PlanValidation.reconcile``).
    """

    intent: str
    steps: tuple[Step, ...]
    risk_level: RiskLevel = RiskLevel.LOW
    rollback: str = NO_ROLLBACK
    estimated_duration: str = "Unknown"
    prerequisites: tuple[str, ...] = ()
    id: str = field(default_factory=_new_plan_id)
    created_at: datetime = field(default_factory=datetime.now)

    def step(self, step_id: str) -> Step | None:
        """Look up a step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def high_risk_steps(self) -> list[Step]:
        return [s for s in self.steps if s.risk_level is RiskLevel.HIGH]

    def steps_requiring_confirmation(self) -> list[Step]:
        return [s for s in self.steps if s.requires_confirmation]

    def with_risk_level(self, level: RiskLevel) -> "Plan":
        """Return a copy with a different plan-level risk."""
        return replace(self, risk_level=level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "intent": self.intent,
            "steps": [step.to_dict() for step in self.steps],
            "riskLevel": self.risk_level.value,
            "rollback": self.rollback,
            "estimatedDuration": self.estimated_duration,
            "prerequisites": list(self.prerequisites),
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        """Rebuild a plan from its JSON form.

        ``id`` and ``createdAt`` are kept when present so a stored plan
        round-trips unchanged.
        """
        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        created_at = data.get("createdAt", data.get("created_at"))
        if created_at:
            kwargs["created_at"] = datetime.fromisoformat(created_at)

        return cls(
            intent=str(data["intent"]),
            steps=tuple(Step.from_dict(step) for step in data["steps"]),
            risk_level=RiskLevel.parse(data.get("riskLevel", data.get("risk_level"))),
            rollback=data.get("rollback") or NO_ROLLBACK,
            estimated_duration=data.get("estimatedDuration", data.get("estimated_duration")) or "Unknown",
            prerequisites=tuple(data.get("prerequisites") or ()),
            **kwargs,
        )
