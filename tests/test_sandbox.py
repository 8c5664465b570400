"""Tests for sandboxed step execution."""

import os
import shlex
import sys
import time
from pathlib import Path

import pytest

from forge_cli.config import load_settings
from forge_cli.errors import SandboxError
from forge_cli.planning.plan import Step
from forge_cli.planning.planner import parse_plan_response
from forge_cli.sandbox.executor import SANDBOX_SUBDIRS, SandboxConfig, SandboxExecutor
from tests.helpers import plan_json

PYTHON = shlex.quote(sys.executable)


def _step(command: str, **fields) -> Step:
    return Step(id="step-1", description="Test step", command=command, **fields)


class TestExecuteStep:
    """Tests for running commands."""

    @pytest.mark.asyncio
    async def test_echo(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("echo hello world"))

        assert result.success is True
        assert result.exit_code == 0
        assert result.stdout == "hello world"
        assert result.error is None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_default_directory_is_sandbox_root(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("pwd"))

        assert result.stdout == str(executor.root)
        assert result.working_directory == executor.root

    @pytest.mark.asyncio
    async def test_initializes_sandbox_on_first_step(self, executor: SandboxExecutor, sandbox_dir: Path):
        await executor.execute_step(_step("true"))
        for name in SANDBOX_SUBDIRS:
            assert (sandbox_dir / name).is_dir()

    @pytest.mark.asyncio
    async def test_runs_in_project_directory(self, executor: SandboxExecutor, project_dir: Path):
        result = await executor.execute_step(_step("pwd", working_directory=project_dir))
        assert result.stdout == str(project_dir.resolve())

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step(f"{PYTHON} -c 'import sys; sys.exit(3)'"))

        assert result.success is False
        assert result.exit_code == 3
        assert result.error == "Command exited with code 3"

    @pytest.mark.asyncio
    async def test_stderr_is_captured(self, executor: SandboxExecutor):
        result = await executor.execute_step(
            _step(f"{PYTHON} -c 'import sys; sys.stderr.write(\"oops\")'")
        )
        assert result.stderr == "oops"
        assert result.formatted_output() == "oops"

    @pytest.mark.asyncio
    async def test_command_not_found(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("definitely-not-a-real-command-xyz"))

        assert result.success is False
        assert result.exit_code == -1
        assert result.error == "Command not found: definitely-not-a-real-command-xyz"

    @pytest.mark.asyncio
    async def test_shell_syntax_is_not_interpreted(self, executor: SandboxExecutor, sandbox_dir: Path):
        result = await executor.execute_step(_step("echo hi > out.txt"))

        assert result.stdout == "hi > out.txt"
        assert not (sandbox_dir / "out.txt").exists()

    @pytest.mark.asyncio
    async def test_unparseable_command(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("echo 'unterminated"))
        assert result.success is False
        assert result.error.startswith("Cannot parse command")


class TestWorkingDirectory:
    """Tests for working-directory confinement."""

    @pytest.mark.asyncio
    async def test_disallowed_directory_never_spawns(self, executor: SandboxExecutor, sandbox_dir: Path):
        result = await executor.execute_step(_step("ls", working_directory=Path("/etc")))

        assert result.success is False
        assert result.exit_code == -1
        assert result.error == "Working directory not allowed: /etc"
        assert not sandbox_dir.exists()

    def test_sibling_with_shared_prefix_is_rejected(self, tmp_path: Path):
        executor = SandboxExecutor(SandboxConfig(workdir=tmp_path / "work"))
        step = _step("ls", working_directory=tmp_path / "work-evil")

        with pytest.raises(SandboxError, match="not allowed"):
            executor.resolve_working_directory(step)

    def test_traversal_is_resolved(self, executor: SandboxExecutor):
        step = _step("ls", working_directory=executor.root / ".." / ".." / ".." / "etc")
        with pytest.raises(SandboxError):
            executor.resolve_working_directory(step)

    @pytest.mark.asyncio
    async def test_missing_directory_outside_sandbox_fails(
        self, executor: SandboxExecutor, project_dir: Path
    ):
        missing = project_dir / "not-there"

        result = await executor.execute_step(_step("pwd", working_directory=missing))

        assert result.success is False
        assert result.error == f"Working directory does not exist: {missing.resolve()}"
        assert not missing.exists()

    @pytest.mark.asyncio
    async def test_missing_directory_inside_sandbox_is_created(self, executor: SandboxExecutor):
        target = executor.root / "workspace" / "build"

        result = await executor.execute_step(_step("pwd", working_directory=target))

        assert result.success is True
        assert result.stdout == str(target)

    def test_home_is_allowed(self, executor: SandboxExecutor, home_dir: Path):
        step = _step("ls", working_directory=home_dir / "projects")
        assert executor.resolve_working_directory(step) == (home_dir / "projects").resolve()


class TestEnvironment:
    """Tests for the minimal process environment."""

    def test_fixed_overrides(self, executor: SandboxExecutor):
        env = executor.environment()

        assert env["HOME"] == str(executor.root)
        assert env["TMPDIR"] == str(executor.root / "tmp")
        assert env["USER"] == "forge-user"
        assert env["PATH"] == "/usr/local/bin:/usr/bin:/bin"

    def test_caller_secrets_are_not_forwarded(self, executor: SandboxExecutor, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "secret")
        monkeypatch.setenv("LANG", "C.UTF-8")

        env = executor.environment()

        assert "GEMINI_API_KEY" not in env
        assert env["LANG"] == "C.UTF-8"

    @pytest.mark.asyncio
    async def test_process_sees_sandbox_environment(self, executor: SandboxExecutor, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "secret")

        result = await executor.execute_step(_step("env"))

        assert f"HOME={executor.root}" in result.stdout
        assert "GEMINI_API_KEY" not in result.stdout


class TestLimits:
    """Tests for timeouts and output truncation."""

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, executor: SandboxExecutor):
        start = time.monotonic()
        result = await executor.execute_step(
            _step(f"{PYTHON} -c 'import time; time.sleep(10)'", timeout_ms=300)
        )

        assert result.success is False
        assert result.timed_out is True
        assert result.error == "Command timed out after 300ms"
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_step_without_timeout_uses_configured_timeout(self, sandbox_dir: Path):
        executor = SandboxExecutor(SandboxConfig(workdir=sandbox_dir, timeout_ms=300))
        step = _step(f"{PYTHON} -c 'import time; time.sleep(10)'")
        assert step.timeout_ms is None

        result = await executor.execute_step(step)

        assert result.timed_out is True
        assert result.error == "Command timed out after 300ms"

    @pytest.mark.asyncio
    async def test_planned_step_uses_timeout_from_settings(self, tmp_path: Path):
        settings = load_settings(sandbox_workdir=tmp_path / "sandbox", sandbox_timeout_ms=300)
        executor = SandboxExecutor(SandboxConfig.from_settings(settings))
        plan = parse_plan_response(
            plan_json(f"{PYTHON} -c 'import time; time.sleep(10)'")
        )

        result = await executor.execute_step(plan.steps[0])

        assert result.timed_out is True
        assert result.error == "Command timed out after 300ms"

    @pytest.mark.asyncio
    async def test_output_is_truncated(self, sandbox_dir: Path):
        executor = SandboxExecutor(SandboxConfig(workdir=sandbox_dir, max_output_bytes=100))

        result = await executor.execute_step(_step(f"{PYTHON} -c 'print(\"x\" * 500)'"))

        assert result.truncated is True
        assert result.stdout.startswith("x" * 100)
        assert result.stdout.endswith("[OUTPUT TRUNCATED - exceeded 100 bytes]")

    @pytest.mark.asyncio
    async def test_small_output_is_not_truncated(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("echo short"))
        assert result.truncated is False


class TestCleanup:
    """Tests for removing stale temporary files."""

    def test_removes_only_old_files(self, executor: SandboxExecutor):
        executor.initialize()
        tmp_dir = executor.root / "tmp"
        old = tmp_dir / "old.txt"
        fresh = tmp_dir / "fresh.txt"
        old.write_text("old")
        fresh.write_text("fresh")
        stale = time.time() - 2 * executor.config.cleanup_age_seconds
        os.utime(old, (stale, stale))

        assert executor.cleanup() == 1
        assert not old.exists()
        assert fresh.exists()

    def test_missing_sandbox_is_a_no_op(self, executor: SandboxExecutor):
        assert executor.cleanup() == 0


class TestExecutionResult:
    """Tests for result presentation."""

    @pytest.mark.asyncio
    async def test_to_dict(self, executor: SandboxExecutor):
        result = await executor.execute_step(_step("echo hi"))
        data = result.to_dict()

        assert data["stepId"] == "step-1"
        assert data["exitCode"] == 0
        assert data["stdout"] == "hi"
        assert data["timedOut"] is False
