"""Tests for the Plan and Step models and the plan store."""

import json
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from forge_cli.errors import PlanParseError
from forge_cli.planning.plan import NO_ROLLBACK, Plan, Step
from forge_cli.planning.plan_store import PlanStore
from forge_cli.safety.models import RiskLevel
from tests.helpers import make_plan


class TestStep:
    """Tests for Step serialization."""

    def test_from_dict_defaults(self):
        step = Step.from_dict({"id": "step-1", "description": "List", "command": "ls"})

        assert step.requires_confirmation is False
        assert step.risk_level is RiskLevel.LOW
        assert step.working_directory is None
        assert step.timeout_ms is None
        assert step.retry_count == 0

    def test_from_dict_accepts_camel_and_snake_case(self):
        camel = Step.from_dict({
            "id": "s", "description": "d", "command": "ls",
            "requiresConfirmation": True, "riskLevel": "high", "workingDirectory": "/srv",
        })
        snake = Step.from_dict({
            "id": "s", "description": "d", "command": "ls",
            "requires_confirmation": True, "risk_level": "high", "working_directory": "/srv",
        })
        assert camel == snake
        assert camel.working_directory == Path("/srv")

    def test_to_dict_uses_camel_case(self):
        data = Step(id="step-1", description="List", command="ls").to_dict()
        assert data["requiresConfirmation"] is False
        assert data["riskLevel"] == "low"
        assert data["timeout"] is None

    def test_timeout_round_trips(self):
        step = Step.from_dict({"id": "s", "description": "d", "command": "ls", "timeout": 5000})
        assert step.timeout_ms == 5000
        assert Step.from_dict(step.to_dict()) == step

    def test_is_frozen(self):
        step = Step(id="step-1", description="List", command="ls")
        with pytest.raises(FrozenInstanceError):
            step.command = "rm -rf /"  # type: ignore[misc]


class TestPlan:
    """Tests for Plan behavior."""

    def test_ids_are_unique(self):
        assert make_plan("ls").id != make_plan("ls").id

    def test_step_lookup(self):
        plan = make_plan("ls", "pwd")
        assert plan.step("step-2").command == "pwd"
        assert plan.step("step-9") is None

    def test_with_risk_level_returns_copy(self):
        plan = make_plan("ls")
        raised = plan.with_risk_level(RiskLevel.HIGH)

        assert raised is not plan
        assert raised.risk_level is RiskLevel.HIGH
        assert plan.risk_level is RiskLevel.LOW
        assert raised.id == plan.id

    def test_round_trip_keeps_identity(self):
        plan = make_plan("ls", "pwd", working_directory=Path("/srv/app"))
        restored = Plan.from_dict(json.loads(json.dumps(plan.to_dict())))
        assert restored == plan

    def test_from_dict_defaults(self):
        plan = Plan.from_dict({"intent": "List", "steps": [{"id": "a", "description": "d", "command": "ls"}]})
        assert plan.rollback == NO_ROLLBACK
        assert plan.estimated_duration == "Unknown"
        assert plan.prerequisites == ()
        assert plan.id.startswith("plan-")

    def test_selectors(self):
        plan = Plan(
            intent="Mixed",
            steps=(
                Step(id="a", description="d", command="ls"),
                Step(id="b", description="d", command="sudo ls", risk_level=RiskLevel.HIGH),
                Step(id="c", description="d", command="pwd", requires_confirmation=True),
            ),
        )
        assert [s.id for s in plan.high_risk_steps()] == ["b"]
        assert [s.id for s in plan.steps_requiring_confirmation()] == ["c"]


class TestPlanStore:
    """Tests for file-backed plan persistence."""

    def test_save_and_load(self, tmp_path: Path):
        store = PlanStore(tmp_path / "plans" / "plan.json")
        plan = make_plan("ls", "pwd")

        path = store.save(plan)

        assert path.exists()
        assert store.exists()
        assert store.load() == plan

    def test_save_replaces_previous(self, tmp_path: Path):
        store = PlanStore(tmp_path / "plan.json")
        store.save(make_plan("ls"))
        second = make_plan("pwd")

        store.save(second)

        assert store.load().id == second.id
        assert not (tmp_path / "plan.json.tmp").exists()

    def test_missing_file(self, tmp_path: Path):
        store = PlanStore(tmp_path / "missing.json")
        assert not store.exists()
        with pytest.raises(FileNotFoundError):
            store.load()

    def test_invalid_document(self, tmp_path: Path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps({"intent": "no steps"}))
        with pytest.raises(PlanParseError, match="Invalid plan file"):
            PlanStore(path).load()

    def test_not_json(self, tmp_path: Path):
        path = tmp_path / "plan.json"
        path.write_text("not json")
        with pytest.raises(PlanParseError):
            PlanStore(path).load()
