"""Natural-language request to Plan.

The planner sends a fixed system instruction describing the JSON plan
contract plus a user prompt embedding the request, then extracts the first
JSON object from the answer. Models often wrap JSON in prose or code fences,
so everything around the object is ignored.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from forge_cli.errors import PlanParseError
from forge_cli.llm.backend import CompletionOptions, GenerativeBackend
from forge_cli.logging import Loggers
from forge_cli.planning.plan import NO_ROLLBACK, Plan, Step
from forge_cli.safety.models import RiskLevel

logger = Loggers.planning()


SYSTEM_PROMPT = """You are Forge, an assistant that converts natural language requests into safe, structured execution plans.

Your role is to:
1. Understand user intent from natural language
2. Break down complex tasks into discrete steps
3. Identify potential risks and safety concerns
4. Generate executable commands for each step

CRITICAL REQUIREMENTS:
- Always respond with valid JSON only
- Never suggest destructive operations without setting requiresConfirmation to true
- Flag any potentially risky operations
- Provide rollback strategies when possible
- Each command must be a single program invocation: no pipes, redirections, command chaining or substitutions
- Use standard commands that work across Unix-like systems

Response format (JSON only):
{
  "intent": "Clear description of what the user wants to accomplish",
  "steps": [
    {
      "id": "step-1",
      "description": "Human-readable description of this step",
      "command": "actual command to execute",
      "requiresConfirmation": true|false,
      "riskLevel": "none|low|medium|high",
      "workingDirectory": "path where command should run (optional)"
    }
  ],
  "riskLevel": "none|low|medium|high",
  "rollback": "Commands to undo the operation if something goes wrong",
  "estimatedDuration": "rough time estimate",
  "prerequisites": ["list of requirements or dependencies"]
}

Risk levels:
- none: Safe read-only operations (ls, cat, echo, etc.)
- low: File operations in user directories
- medium: System configuration changes, package installations
- high: Destructive operations, system-wide changes

Always err on the side of caution and require confirmation for anything that could cause data loss or system instability."""


def build_user_prompt(query: str) -> str:
    return f"""User request: "{query}"

Please analyze this request and create a structured execution plan. Consider:
1. What the user wants to accomplish
2. The safest way to achieve it
3. Any potential risks or side effects
4. Whether confirmation is needed for each step

Respond with valid JSON only."""


def build_refinement_prompt(plan: Plan, feedback: str) -> str:
    return f"""The user has provided feedback on the execution plan.

Original plan: {json.dumps(plan.to_dict(), indent=2)}
User feedback: "{feedback}"

Please refine the plan based on this feedback. Respond with the updated JSON plan using the same format."""


class _StepPayload(BaseModel):
    """One step as the model is asked to return it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    command: str = Field(min_length=1)
    requires_confirmation: bool | None = Field(default=None, alias="requiresConfirmation")
    risk_level: str | None = Field(default=None, alias="riskLevel")
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    timeout: int | None = Field(default=None, gt=0)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("description", "command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class _PlanPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intent: str = Field(min_length=1)
    steps: list[_StepPayload] = Field(min_length=1)
    risk_level: str | None = Field(default=None, alias="riskLevel")
    rollback: str | None = None
    estimated_duration: str | None = Field(default=None, alias="estimatedDuration")
    prerequisites: list[str] | None = None

    @model_validator(mode="after")
    def _unique_step_ids(self) -> "_PlanPayload":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id: {step.id}")
            seen.add(step.id)
        return self


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object embedded in ``text``.

    Raises:
        PlanParseError: If no position in the text starts a JSON object.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(value, dict):
                return value
        start = text.find("{", start + 1)
    raise PlanParseError("No JSON object found in response", raw_response=text)


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "plan"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_plan_response(text: str, cwd: Path | None = None) -> Plan:
    """Parse a raw backend answer into a Plan.

    Missing optional fields are defaulted: ``requiresConfirmation=false``,
    ``riskLevel=low``, ``workingDirectory=cwd``, plan-level ``riskLevel=low``,
    a no-rollback notice and no prerequisites.

    Args:
        text: Raw response text.
        cwd: Default working directory for steps (the current directory when
            not given).

    Raises:
        PlanParseError: If the response does not hold a well-formed plan.
    """
    data = extract_json_object(text)
    try:
        payload = _PlanPayload.model_validate(data)
    except PydanticValidationError as e:
        raise PlanParseError(
            f"Invalid plan structure: {_format_errors(e)}", raw_response=text
        ) from e

    default_dir = cwd or Path.cwd()
    steps = tuple(
        Step(
            id=step.id,
            description=step.description,
            command=step.command.strip(),
            requires_confirmation=bool(step.requires_confirmation),
            risk_level=RiskLevel.parse(step.risk_level),
            working_directory=(
                Path(step.working_directory).expanduser()
                if step.working_directory
                else default_dir
            ),
            timeout_ms=step.timeout,
        )
        for step in payload.steps
    )
    return Plan(
        intent=payload.intent,
        steps=steps,
        risk_level=RiskLevel.parse(payload.risk_level),
        rollback=payload.rollback or NO_ROLLBACK,
        estimated_duration=payload.estimated_duration or "Unknown",
        prerequisites=tuple(payload.prerequisites or ()),
    )


class Planner:
    """Turns natural-language requests into plans.

    Example:
        planner = Planner(GeminiBackend.from_settings(settings))
        plan = await planner.create_plan("show disk usage of this directory")
    """

    def __init__(
        self,
        backend: GenerativeBackend,
        options: CompletionOptions | None = None,
        cwd: Path | None = None,
    ):
        self.backend = backend
        self.options = options or CompletionOptions()
        self.cwd = cwd

    async def create_plan(self, query: str) -> Plan:
        """Create a plan for a request.

        Raises:
            PlanParseError: If the answer is not a well-formed plan.
            ApiError: If the backend call failed.
        """
        if not query.strip():
            raise PlanParseError("Cannot plan an empty request")

        text = await self.backend.complete(SYSTEM_PROMPT, build_user_prompt(query), self.options)
        plan = self._parse(text, query=query)
        logger.info(
            "plan_created",
            plan_id=plan.id,
            step_count=len(plan.steps),
            risk_level=plan.risk_level.value,
        )
        return plan

    async def refine_plan(self, plan: Plan, feedback: str) -> Plan:
        """Ask the backend for a new plan taking ``feedback`` into account.

        The given plan is not modified; the result has a new id.
        """
        text = await self.backend.complete(
            SYSTEM_PROMPT, build_refinement_prompt(plan, feedback), self.options
        )
        refined = self._parse(text, query=feedback)
        logger.info(
            "plan_refined",
            original_plan_id=plan.id,
            plan_id=refined.id,
            step_count=len(refined.steps),
        )
        return refined

    def _parse(self, text: str, query: str) -> Plan:
        try:
            return parse_plan_response(text, cwd=self.cwd)
        except PlanParseError as e:
            logger.warning(
                "plan_parse_failed",
                query=query,
                error=str(e),
                response_length=len(text),
            )
            raise
