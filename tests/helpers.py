"""Helpers shared by the forge-cli tests."""

import json
from pathlib import Path
from typing import Any

from forge_cli.llm.backend import CompletionOptions
from forge_cli.planning.plan import Plan, Step
from forge_cli.safety.models import RiskLevel


class FakeBackend:
    """Scripted generative backend.

    Each call to ``complete`` pops the next queued response; a queued
    exception is raised instead of returned.
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[tuple[str, str, CompletionOptions | None]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions | None = None,
    ) -> str:
        self.calls.append((system_prompt, user_prompt, options))
        if not self.responses:
            raise AssertionError("FakeBackend has no queued response")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def plan_json(*commands: str, **plan_fields: Any) -> str:
    """JSON plan document with one step per command."""
    data: dict[str, Any] = {
        "intent": plan_fields.pop("intent", "Test intent"),
        "steps": [
            {"id": f"step-{i}", "description": f"Run {command}", "command": command}
            for i, command in enumerate(commands, start=1)
        ],
    }
    data.update(plan_fields)
    return json.dumps(data)


def make_plan(*commands: str, working_directory: Path | None = None, **step_fields: Any) -> Plan:
    """Plan with one step per command."""
    return Plan(
        intent="Test intent",
        steps=tuple(
            Step(
                id=f"step-{i}",
                description=f"Run {command}",
                command=command,
                working_directory=working_directory,
                **step_fields,
            )
            for i, command in enumerate(commands, start=1)
        ),
        risk_level=RiskLevel.LOW,
    )
