"""Plan, validate, gate and execute.

One pipeline run handles one plan, strictly sequentially: step N may rely on
the side effects of step N-1, so steps never overlap.

Gate per step:

- ``allowed=False``: BLOCKED, never executed.
- Needs confirmation (validator or planner asked for it, risk is high, or
  ``require_confirmation`` is set and risk is medium or above): the confirm
  callback decides; a refusal is DECLINED.
- Otherwise the step runs and is EXECUTED, successful or not.

What happens to the siblings of a blocked step is an ExecutionPolicy
decision made here, not in the validator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from forge_cli.audit import AuditConfig, AuditLogger
from forge_cli.logging import Loggers, log_context
from forge_cli.planning.plan import Plan, Step
from forge_cli.planning.planner import Planner
from forge_cli.safety.models import PlanValidation, RiskLevel, ValidationResult
from forge_cli.safety.validator import Validator
from forge_cli.sandbox.executor import ExecutionResult, SandboxConfig, SandboxExecutor

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings
    from forge_cli.llm.backend import GenerativeBackend

logger = Loggers.pipeline()

ConfirmCallback = Callable[[Step, ValidationResult], Awaitable[bool]]


class StepOutcome(str, Enum):
    """What happened to a step."""

    EXECUTED = "executed"
    BLOCKED = "blocked"
    DECLINED = "declined"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepReport:
    """Outcome of one step in a pipeline run."""

    step: Step
    outcome: StepOutcome
    validation: ValidationResult | None = None
    result: ExecutionResult | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is StepOutcome.EXECUTED and self.result is not None and self.result.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepId": self.step.id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "validation": self.validation.to_dict() if self.validation else None,
            "result": self.result.to_dict() if self.result else None,
        }


@dataclass(frozen=True)
class PipelineReport:
    """Everything a reporter needs about one pipeline run."""

    plan: Plan
    validation: PlanValidation
    steps: tuple[StepReport, ...]
    halted: bool = False

    def with_outcome(self, outcome: StepOutcome) -> list[StepReport]:
        return [report for report in self.steps if report.outcome is outcome]

    @property
    def success(self) -> bool:
        """Whether every step ran and succeeded."""
        return bool(self.steps) and all(report.succeeded for report in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "validation": self.validation.to_dict(),
            "steps": [report.to_dict() for report in self.steps],
            "halted": self.halted,
            "success": self.success,
        }


@dataclass
class ExecutionPolicy:
    """Caller decisions about gating and halting.

    Attributes:
        halt_on_blocked_plan: Run nothing when any step is blocked.
        stop_on_failure: Skip the remaining steps after a failed execution.
        stop_on_decline: Skip the remaining steps after a declined step.
        auto_approve: Approve steps needing confirmation without asking.
        allow_high_risk: Let ``auto_approve`` cover high-risk steps too.
        require_confirmation: Ask for medium-risk steps, not only high.
    """

    halt_on_blocked_plan: bool = True
    stop_on_failure: bool = True
    stop_on_decline: bool = True
    auto_approve: bool = False
    allow_high_risk: bool = False
    require_confirmation: bool = True

    @classmethod
    def from_settings(cls, settings: "ForgeSettings", **overrides: Any) -> "ExecutionPolicy":
        values: dict[str, Any] = {
            "allow_high_risk": settings.allow_high_risk,
            "require_confirmation": settings.require_confirmation,
        }
        values.update(overrides)
        return cls(**values)


async def decline_all(step: Step, result: ValidationResult) -> bool:
    """Confirmation callback that refuses everything."""
    return False


@dataclass
class _RunState:
    reports: list[StepReport] = field(default_factory=list)
    halted: bool = False
    halt_reason: str | None = None


class Pipeline:
    """Orchestrates planner, validator and executor for one request.

    Example:
        pipeline = Pipeline(planner, validator, executor, confirm=ask_user)
        report = await pipeline.run("compress the logs directory")
        for step_report in report.steps:
            print(step_report.step.id, step_report.outcome.value)
    """

    def __init__(
        self,
        planner: Planner,
        validator: Validator,
        executor: SandboxExecutor,
        *,
        confirm: ConfirmCallback | None = None,
        policy: ExecutionPolicy | None = None,
        audit: AuditLogger | None = None,
    ):
        """Initialize the pipeline.

        Args:
            planner: Creates and refines plans.
            validator: Produces the per-step verdicts.
            executor: Runs approved steps.
            confirm: Async callback deciding on steps that need approval;
                without one every such step is declined.
            policy: Gating and halting decisions.
            audit: Optional audit trail of gate decisions.
        """
        self.planner = planner
        self.validator = validator
        self.executor = executor
        self.confirm = confirm or decline_all
        self.policy = policy or ExecutionPolicy()
        self.audit = audit

    @classmethod
    def from_settings(
        cls,
        settings: "ForgeSettings",
        *,
        backend: "GenerativeBackend | None" = None,
        confirm: ConfirmCallback | None = None,
        policy: ExecutionPolicy | None = None,
    ) -> "Pipeline":
        """Wire every component from one settings object."""
        from forge_cli.llm.backend import CompletionOptions, GeminiBackend

        backend = backend or GeminiBackend.from_settings(settings)
        audit = None
        if settings.audit_enabled:
            audit = AuditLogger(AuditConfig.from_settings(settings))
        return cls(
            Planner(backend, CompletionOptions.from_settings(settings)),
            Validator(
                settings.resolved_denylist_file,
                allow_shell_operators=settings.allow_shell_operators,
            ),
            SandboxExecutor(SandboxConfig.from_settings(settings)),
            confirm=confirm,
            policy=policy or ExecutionPolicy.from_settings(settings),
            audit=audit,
        )

    async def plan(self, query: str) -> Plan:
        return await self.planner.create_plan(query)

    async def refine(self, plan: Plan, feedback: str) -> Plan:
        return await self.planner.refine_plan(plan, feedback)

    def validate(self, plan: Plan) -> tuple[Plan, PlanValidation]:
        """Validate a plan.

        Returns:
            The plan with its risk level raised to the validated maximum, and
            the validation.
        """
        validation = self.validator.validate_plan(plan)
        return validation.reconcile(plan), validation

    def needs_confirmation(self, step: Step, result: ValidationResult) -> bool:
        if result.requires_confirmation or step.requires_confirmation or result.is_high_risk:
            return True
        return self.policy.require_confirmation and result.risk_level.rank >= RiskLevel.MEDIUM.rank

    async def execute(self, plan: Plan, validation: PlanValidation | None = None) -> PipelineReport:
        """Gate and run the steps of a plan in order.

        Args:
            plan: Plan to run.
            validation: Its validation; computed when not given or when it
                does not match the plan's steps.
        """
        if validation is None or [r.step_id for r in validation.step_results] != [
            s.id for s in plan.steps
        ]:
            plan, validation = self.validate(plan)

        with log_context(plan_id=plan.id):
            state = _RunState()
            if not validation.allowed and self.policy.halt_on_blocked_plan:
                state.halted = True
                state.halt_reason = "Plan contains blocked steps"
                logger.warning(
                    "plan_halted_blocked",
                    blocked_steps=validation.summary.blocked_steps,
                )

            for step, result in zip(plan.steps, validation.step_results):
                await self._gate_step(plan, step, result, state)

        report = PipelineReport(plan, validation, tuple(state.reports), halted=state.halted)
        logger.info(
            "pipeline_completed",
            plan_id=plan.id,
            executed=len(report.with_outcome(StepOutcome.EXECUTED)),
            blocked=len(report.with_outcome(StepOutcome.BLOCKED)),
            declined=len(report.with_outcome(StepOutcome.DECLINED)),
            skipped=len(report.with_outcome(StepOutcome.SKIPPED)),
            success=report.success,
        )
        return report

    async def run(self, query: str) -> PipelineReport:
        """Plan, validate and execute a request."""
        plan = await self.plan(query)
        plan, validation = self.validate(plan)
        return await self.execute(plan, validation)

    async def _gate_step(
        self,
        plan: Plan,
        step: Step,
        result: ValidationResult,
        state: _RunState,
    ) -> None:
        if not result.allowed:
            reason = "; ".join(result.blocked_reasons) or "Blocked by policy"
            logger.warning("step_blocked", step_id=step.id, reasons=result.blocked_reasons)
            self._record(plan, step, result, StepOutcome.BLOCKED, state, reason=reason)
            return

        if state.halted:
            self._record(plan, step, result, StepOutcome.SKIPPED, state, reason=state.halt_reason)
            return

        approval = "auto"
        if self.needs_confirmation(step, result):
            approval = await self._approve(step, result)
            if approval is None:
                logger.info("step_declined", step_id=step.id, risk_level=result.risk_level.value)
                self._record(
                    plan, step, result, StepOutcome.DECLINED, state, reason="Declined by user"
                )
                if self.policy.stop_on_decline:
                    state.halted = True
                    state.halt_reason = f"Skipped after step {step.id} was declined"
                return

        execution = await self.executor.execute_step(step)
        self._record(
            plan, step, result, StepOutcome.EXECUTED, state, execution=execution, approval=approval
        )
        if not execution.success and self.policy.stop_on_failure:
            state.halted = True
            state.halt_reason = f"Skipped after step {step.id} failed"

    async def _approve(self, step: Step, result: ValidationResult) -> str | None:
        if self.policy.auto_approve and (not result.is_high_risk or self.policy.allow_high_risk):
            return "auto_approved"
        if await self.confirm(step, result):
            return "confirmed"
        return None

    def _record(
        self,
        plan: Plan,
        step: Step,
        result: ValidationResult,
        outcome: StepOutcome,
        state: _RunState,
        *,
        reason: str | None = None,
        execution: ExecutionResult | None = None,
        approval: str | None = None,
    ) -> None:
        state.reports.append(
            StepReport(step, outcome, validation=result, result=execution, reason=reason)
        )
        if self.audit is None or outcome is StepOutcome.SKIPPED:
            return
        self.audit.log_step(
            step,
            outcome.value,
            result.risk_level,
            plan_id=plan.id,
            approval=approval,
            result=execution,
            blocked_reasons=result.blocked_reasons,
            warnings=result.warnings,
        )
