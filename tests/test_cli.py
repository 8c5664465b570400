"""Tests for the forge command line."""

import asyncio
import json
import threading
from pathlib import Path

import pytest
from click.testing import CliRunner

from forge_cli.cli import app
from forge_cli.cli.app import main
from forge_cli.planning.plan_store import PlanStore
from forge_cli.safety.validator import Validator
from forge_cli.settings_persistence import SettingsPersistence
from tests.helpers import FakeBackend, make_plan, plan_json


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point every writable location at tmp_path."""
    monkeypatch.setenv("FORGE_SANDBOX_WORKDIR", str(tmp_path / "sandbox"))
    monkeypatch.setenv("FORGE_AUDIT_DIR", str(tmp_path / "audit"))
    monkeypatch.setenv("FORGE_KEY_STATE_FILE", str(tmp_path / "key_state.json"))


def _obj(*responses) -> dict:
    backend = FakeBackend(*responses)
    return {"backend_factory": lambda settings: backend, "backend": backend}


def _confirm_json(command: str) -> str:
    """Plan with one step the planner wants confirmed."""
    return json.dumps({
        "intent": "Careful step",
        "steps": [{
            "id": "step-1",
            "description": "Needs approval",
            "command": command,
            "requiresConfirmation": True,
        }],
    })


class TestMain:
    def test_help(self, runner: CliRunner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("plan", "refine", "run", "check", "config"):
            assert command in result.output

    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestPlanCommand:
    """Tests for `forge plan`."""

    def test_shows_plan(self, runner: CliRunner):
        result = runner.invoke(main, ["plan", "list", "files"], obj=_obj(plan_json("ls -la")))

        assert result.exit_code == 0, result.output
        assert "ls -la" in result.output

    def test_query_is_joined(self, runner: CliRunner):
        obj = _obj(plan_json("ls"))
        runner.invoke(main, ["plan", "list", "the", "files"], obj=obj)
        assert '"list the files"' in obj["backend"].calls[0][1]

    def test_json_output(self, runner: CliRunner):
        result = runner.invoke(main, ["plan", "--json", "wipe"], obj=_obj(plan_json("rm -rf /")))

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["plan"]["steps"][0]["command"] == "rm -rf /"
        assert data["validation"]["allowed"] is False
        assert data["plan"]["riskLevel"] == "high"

    def test_saves_plan(self, runner: CliRunner, tmp_path: Path):
        out = tmp_path / "plan.json"

        result = runner.invoke(main, ["plan", "-o", str(out), "list"], obj=_obj(plan_json("ls")))

        assert result.exit_code == 0, result.output
        assert PlanStore(out).load().steps[0].command == "ls"

    def test_parse_error_exits_1(self, runner: CliRunner):
        result = runner.invoke(main, ["plan", "list"], obj=_obj("I cannot do that"))

        assert result.exit_code == 1
        assert "No JSON object found" in result.output

    def test_missing_api_key(self, runner: CliRunner):
        result = runner.invoke(main, ["plan", "list"], obj={})

        assert result.exit_code == 1
        assert "No API keys configured" in result.output


class TestRefineCommand:
    """Tests for `forge refine`."""

    def test_overwrites_plan_file(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "plan.json"
        original = make_plan("ls")
        PlanStore(path).save(original)
        obj = _obj(plan_json("ls -la"))

        result = runner.invoke(main, ["refine", str(path), "show", "hidden", "files"], obj=obj)

        assert result.exit_code == 0, result.output
        refined = PlanStore(path).load()
        assert refined.steps[0].command == "ls -la"
        assert refined.id != original.id
        assert '"show hidden files"' in obj["backend"].calls[0][1]

    def test_output_option(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "plan.json"
        out = tmp_path / "refined.json"
        PlanStore(path).save(make_plan("ls"))

        result = runner.invoke(main, ["refine", str(path), "more", "-o", str(out)], obj=_obj(plan_json("ls -la")))

        assert result.exit_code == 0, result.output
        assert PlanStore(path).load().steps[0].command == "ls"
        assert PlanStore(out).load().steps[0].command == "ls -la"


class TestRunCommand:
    """Tests for `forge run`."""

    def test_runs_safe_plan(self, runner: CliRunner):
        result = runner.invoke(main, ["run", "greet"], obj=_obj(plan_json("echo hello-from-forge")))

        assert result.exit_code == 0, result.output
        assert "hello-from-forge" in result.output

    def test_blocked_plan_exits_1(self, runner: CliRunner):
        result = runner.invoke(main, ["run", "wipe"], obj=_obj(plan_json("echo hi", "rm -rf /")))

        assert result.exit_code == 1
        assert "blocked" in result.output

    def test_dry_run_executes_nothing(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["run", "--dry-run", "greet"], obj=_obj(plan_json("echo hi")))

        assert result.exit_code == 0, result.output
        assert not (tmp_path / "sandbox").exists()

    def test_confirmation_prompt_declined(self, runner: CliRunner):
        result = runner.invoke(
            main, ["run", "careful"], obj=_obj(_confirm_json("echo never-printed")), input="n\n"
        )

        assert result.exit_code == 1
        assert "Run this step?" in result.output
        assert "declined" in result.output

    def test_confirmation_prompt_accepted(self, runner: CliRunner):
        result = runner.invoke(
            main, ["run", "careful"], obj=_obj(_confirm_json("echo confirmed-run")), input="y\n"
        )

        assert result.exit_code == 0, result.output
        assert "confirmed-run" in result.output

    def test_confirmation_prompt_runs_off_the_event_loop(self, monkeypatch: pytest.MonkeyPatch):
        prompt_threads: list[int] = []

        def prompt(step, result):
            prompt_threads.append(threading.get_ident())
            return True

        monkeypatch.setattr(app, "_prompt_confirmation", prompt)
        step = make_plan("echo hi").steps[0]

        approved = asyncio.run(app._confirm_step(step, Validator().validate_step(step)))

        assert approved is True
        assert prompt_threads and prompt_threads[0] != threading.get_ident()

    def test_yes_approves_without_prompt(self, runner: CliRunner):
        result = runner.invoke(main, ["run", "-y", "careful"], obj=_obj(_confirm_json("echo auto-run")))

        assert result.exit_code == 0, result.output
        assert "Run this step?" not in result.output
        assert "auto-run" in result.output

    def test_saved_plan(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "plan.json"
        PlanStore(path).save(make_plan("echo from-saved-plan"))

        result = runner.invoke(main, ["run", "--plan", str(path)], obj={})

        assert result.exit_code == 0, result.output
        assert "from-saved-plan" in result.output

    def test_query_and_plan_are_exclusive(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "plan.json"
        PlanStore(path).save(make_plan("ls"))

        assert runner.invoke(main, ["run", "--plan", str(path), "list"], obj={}).exit_code == 2
        assert runner.invoke(main, ["run"], obj={}).exit_code == 2

    def test_writes_audit_log(self, runner: CliRunner, tmp_path: Path):
        runner.invoke(main, ["run", "greet"], obj=_obj(plan_json("echo hi")))
        logs = list((tmp_path / "audit").glob("forge_audit_*.jsonl"))
        assert len(logs) == 1


class TestCheckCommand:
    """Tests for `forge check`."""

    def test_blocked_command(self, runner: CliRunner):
        result = runner.invoke(main, ["check", "rm", "-rf", "/"])

        assert result.exit_code == 1
        assert "Blocked" in result.output

    def test_safe_command(self, runner: CliRunner):
        result = runner.invoke(main, ["check", "ls", "-la"])
        assert result.exit_code == 0, result.output

    def test_json_output(self, runner: CliRunner):
        result = runner.invoke(main, ["check", "--json", "git", "reset", "--hard"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["riskLevel"] == "high"
        assert data["requiresConfirmation"] is True

    def test_custom_denylist(self, runner: CliRunner, tmp_path: Path, monkeypatch):
        policy = tmp_path / "denylist.yaml"
        policy.write_text("commands:\n  - make deploy\n")
        monkeypatch.setenv("FORGE_DENYLIST_FILE", str(policy))

        assert runner.invoke(main, ["check", "make", "deploy"]).exit_code == 1
        assert runner.invoke(main, ["check", "rm", "-rf", "/"]).exit_code == 0


class TestConfigCommands:
    """Tests for `forge config`."""

    def test_set_and_show(self, runner: CliRunner):
        result = runner.invoke(main, ["config", "set", "model", "gemini-2.5-pro"])
        assert result.exit_code == 0, result.output

        shown = runner.invoke(main, ["config", "show"])
        assert "gemini-2.5-pro" in shown.output

    def test_set_invalid(self, runner: CliRunner):
        result = runner.invoke(main, ["config", "set", "temperature", "hot"])
        assert result.exit_code == 1
        assert "Invalid value" in result.output

    def test_set_user_scope(self, runner: CliRunner, home_dir: Path):
        result = runner.invoke(main, ["config", "set", "--user", "top_k", "5"])

        assert result.exit_code == 0, result.output
        assert json.loads((home_dir / ".forge_cli" / "settings.json").read_text()) == {"top_k": 5}

    def test_add_and_remove_key(self, runner: CliRunner):
        assert runner.invoke(main, ["config", "add-key", "AIzaSyFirstKey0001"]).exit_code == 0
        assert runner.invoke(main, ["config", "add-key", "AIzaSyOtherKey0002"]).exit_code == 0

        shown = runner.invoke(main, ["config", "show"])
        assert "0001" in shown.output
        assert "AIzaSyFirstKey0001" not in shown.output

        assert runner.invoke(main, ["config", "remove-key", "0"]).exit_code == 0
        assert SettingsPersistence().load_api_keys() == ["AIzaSyOtherKey0002"]

    def test_remove_missing_key(self, runner: CliRunner):
        result = runner.invoke(main, ["config", "remove-key", "3"])
        assert result.exit_code == 1

    def test_path(self, runner: CliRunner, home_dir: Path):
        result = runner.invoke(main, ["config", "path"])

        assert result.exit_code == 0
        assert f"credentials: {home_dir / '.forge_cli' / 'credentials.json'}" in result.output

    def test_check_keys_without_keys(self, runner: CliRunner):
        result = runner.invoke(main, ["config", "check-keys"])
        assert result.exit_code == 1
        assert "No API keys configured" in result.output
