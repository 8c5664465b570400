"""Planning: the Plan model, the LLM-backed planner and plan persistence.

Example:
    >>> from forge_cli.planning import Plan
    >>> plan = Plan.from_dict({
    ...     "intent": "Show the date",
    ...     "steps": [{"id": "step-1", "description": "Date", "command": "date"}],
    ... })
    >>> [step.command for step in plan.steps]
    ['date']
"""

from forge_cli.planning.plan import NO_ROLLBACK, Plan, Step
from forge_cli.planning.plan_store import PlanStore
from forge_cli.planning.planner import (
    SYSTEM_PROMPT,
    Planner,
    extract_json_object,
    parse_plan_response,
)

__all__ = [
    "NO_ROLLBACK",
    "SYSTEM_PROMPT",
    "Plan",
    "PlanStore",
    "Planner",
    "Step",
    "extract_json_object",
    "parse_plan_response",
]
