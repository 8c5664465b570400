"""Sandboxed step execution.

A step runs as a single program invocation:

- The working directory must resolve under the sandbox root, the current
  directory or the user's home directory. This is checked before anything is
  created or spawned. Missing directories are created only inside the
  sandbox root; elsewhere they fail the step.
- The command is split with ``shlex`` and executed directly, never through a
  shell, so pipes and redirections are not interpreted. The validator rejects
  such commands up front.
- The environment is a minimal inherited set plus fixed overrides; the
  caller's full environment is not forwarded.
- A timeout kills the process. Steps without their own timeout use
  ``SandboxConfig.timeout_ms``.

``execute_step`` never raises: every failure ends up in the returned
ExecutionResult.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from forge_cli.errors import SandboxError
from forge_cli.logging import Loggers
from forge_cli.planning.plan import Step

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings

logger = Loggers.sandbox()

DEFAULT_WORKDIR = Path("/tmp/forge-work")
DEFAULT_TIMEOUT_MS = 30000
SANDBOX_SUBDIRS = ("tmp", "logs", "workspace")
SANDBOX_PATH = "/usr/local/bin:/usr/bin:/bin"
SANDBOX_USER = "forge-user"
SANDBOX_SHELL = "/bin/bash"

# Variables copied from the caller's environment when present
INHERITED_ENV_VARS = ("LANG", "LC_ALL", "LC_CTYPE", "TERM", "TZ")


@dataclass
class SandboxConfig:
    """Sandbox settings.

    Attributes:
        workdir: Sandbox root, used as HOME and as the default working directory.
        timeout_ms: Timeout for steps that do not carry their own.
        max_output_bytes: Captured bytes per stream before truncation.
        cleanup_age_seconds: Age past which files in ``tmp`` are removed.
    """

    workdir: Path = DEFAULT_WORKDIR
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output_bytes: int = 1_000_000
    cleanup_age_seconds: int = 3600

    @classmethod
    def from_settings(cls, settings: "ForgeSettings") -> "SandboxConfig":
        return cls(
            workdir=settings.sandbox_workdir,
            timeout_ms=settings.sandbox_timeout_ms,
            max_output_bytes=settings.sandbox_max_output_bytes,
            cleanup_age_seconds=settings.sandbox_cleanup_age_seconds,
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal record of one executed step.

    Attributes:
        step_id: Id of the executed step.
        command: Command as written in the step.
        exit_code: Process exit code; -1 when no exit code was observed.
        stdout: Captured standard output (may be truncated).
        stderr: Captured standard error (may be truncated).
        duration_ms: Wall-clock duration in milliseconds.
        working_directory: Directory the command ran in (or would have).
        success: Whether the command exited with code 0.
        error: Failure description, None on success.
        truncated: Whether any output was truncated.
        timed_out: Whether the process was killed on timeout.
    """

    step_id: str
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    working_directory: Path
    success: bool
    error: str | None = None
    truncated: bool = False
    timed_out: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    def formatted_output(self) -> str:
        """The most useful output for display."""
        if self.success and self.stdout:
            return self.stdout
        if self.stderr:
            return self.stderr
        if self.error:
            return self.error
        return self.stdout or "No output"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stepId": self.step_id,
            "command": self.command,
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration": self.duration_ms,
            "workingDirectory": str(self.working_directory),
            "success": self.success,
            "error": self.error,
            "truncated": self.truncated,
            "timedOut": self.timed_out,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class _ProcessOutput:
    exit_code: int
    stdout: str
    stderr: str
    truncated: bool


class SandboxExecutor:
    """Runs plan steps in a constrained subprocess.

    Example:
        executor = SandboxExecutor(SandboxConfig(workdir=Path("/tmp/forge-work")))
        executor.initialize()
        result = await executor.execute_step(step)
        print(result.formatted_output())
    """

    def __init__(self, config: SandboxConfig | None = None):
        self.config = config or SandboxConfig()
        self.root = Path(self.config.workdir).expanduser().resolve()
        self._initialized = False

    @property
    def allowed_roots(self) -> tuple[Path, ...]:
        """Directories a step may run under."""
        return (self.root, Path.cwd().resolve(), Path.home().resolve())

    def initialize(self) -> None:
        """Create the sandbox root and its subdirectories.

        Raises:
            SandboxError: If the directories cannot be created.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for name in SANDBOX_SUBDIRS:
                (self.root / name).mkdir(exist_ok=True)
        except OSError as e:
            raise SandboxError(f"Failed to initialize sandbox: {e}") from e
        self._initialized = True
        logger.debug("sandbox_initialized", workdir=str(self.root))

    def environment(self) -> dict[str, str]:
        """The environment passed to every step."""
        env = {name: os.environ[name] for name in INHERITED_ENV_VARS if name in os.environ}
        env.update(
            PATH=SANDBOX_PATH,
            HOME=str(self.root),
            TMPDIR=str(self.root / "tmp"),
            USER=SANDBOX_USER,
            LOGNAME=SANDBOX_USER,
            SHELL=SANDBOX_SHELL,
        )
        return env

    def resolve_working_directory(self, step: Step) -> Path:
        """Resolve and check a step's working directory.

        Raises:
            SandboxError: If the directory is outside every allowed root.
        """
        requested = step.working_directory or self.root
        resolved = Path(requested).expanduser().resolve()
        if not any(resolved.is_relative_to(root) for root in self.allowed_roots):
            raise SandboxError(f"Working directory not allowed: {requested}")
        return resolved

    async def execute_step(self, step: Step) -> ExecutionResult:
        """Run one step.

        Args:
            step: Step to run. It is not modified.

        Returns:
            ExecutionResult; failures have ``success=False`` and ``error`` set.
        """
        start = time.monotonic()
        working_dir = Path(step.working_directory or self.root)
        logger.info("executing_step", step_id=step.id, command=step.command)

        try:
            working_dir = self.resolve_working_directory(step)
            if not self._initialized:
                self.initialize()
            self._ensure_working_directory(working_dir)
            timeout_ms = step.timeout_ms or self.config.timeout_ms
            output = await self._run(step.command, working_dir, timeout_ms)
        except SandboxError as e:
            return self._failure(step, working_dir, start, str(e), timed_out=_is_timeout(e))
        except Exception as e:
            logger.exception("step_execution_error", step_id=step.id)
            return self._failure(step, working_dir, start, f"Execution error: {e}")

        duration_ms = _elapsed_ms(start)
        success = output.exit_code == 0
        result = ExecutionResult(
            step_id=step.id,
            command=step.command,
            exit_code=output.exit_code,
            stdout=output.stdout,
            stderr=output.stderr,
            duration_ms=duration_ms,
            working_directory=working_dir,
            success=success,
            error=None if success else f"Command exited with code {output.exit_code}",
            truncated=output.truncated,
        )
        logger.info(
            "step_execution_completed",
            step_id=step.id,
            success=success,
            exit_code=output.exit_code,
            duration_ms=duration_ms,
        )
        return result

    def _ensure_working_directory(self, working_dir: Path) -> None:
        # Only directories inside the sandbox are created on demand
        if working_dir.is_dir():
            return
        if not working_dir.is_relative_to(self.root):
            raise SandboxError(f"Working directory does not exist: {working_dir}")
        try:
            working_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SandboxError(f"Cannot create working directory {working_dir}: {e}") from e

    async def _run(self, command: str, working_dir: Path, timeout_ms: int) -> _ProcessOutput:
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise SandboxError(f"Cannot parse command: {e}") from e
        if not argv:
            raise SandboxError("Empty command")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(working_dir),
                env=self.environment(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SandboxError(f"Command not found: {argv[0]}") from e
        except OSError as e:
            raise SandboxError(f"Command execution failed: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise SandboxError(f"Command timed out after {timeout_ms}ms") from e

        stdout, stdout_truncated = self._decode_and_truncate(stdout_bytes)
        stderr, stderr_truncated = self._decode_and_truncate(stderr_bytes)
        return _ProcessOutput(
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout,
            stderr=stderr,
            truncated=stdout_truncated or stderr_truncated,
        )

    def _decode_and_truncate(self, data: bytes) -> tuple[str, bool]:
        limit = self.config.max_output_bytes
        truncated = len(data) > limit
        text = data[:limit].decode("utf-8", errors="replace").rstrip()
        if truncated:
            text += f"\n... [OUTPUT TRUNCATED - exceeded {limit} bytes]"
        return text, truncated

    def _failure(
        self,
        step: Step,
        working_dir: Path,
        start: float,
        message: str,
        timed_out: bool = False,
    ) -> ExecutionResult:
        logger.error("step_execution_failed", step_id=step.id, error=message)
        return ExecutionResult(
            step_id=step.id,
            command=step.command,
            exit_code=-1,
            stdout="",
            stderr=message,
            duration_ms=_elapsed_ms(start),
            working_directory=working_dir,
            success=False,
            error=message,
            timed_out=timed_out,
        )

    def cleanup(self) -> int:
        """Remove files in the sandbox ``tmp`` directory older than the cleanup age.

        Failures are logged, never raised.

        Returns:
            Number of files removed.
        """
        tmp_dir = self.root / "tmp"
        cutoff = time.time() - self.config.cleanup_age_seconds
        removed = 0
        try:
            entries = list(tmp_dir.iterdir())
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning("sandbox_cleanup_failed", error=str(e))
            return 0

        for path in entries:
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("sandbox_cleanup_failed", path=str(path), error=str(e))

        logger.debug("sandbox_cleanup_completed", removed=removed)
        return removed


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _is_timeout(error: SandboxError) -> bool:
    return isinstance(error.__cause__, asyncio.TimeoutError)
