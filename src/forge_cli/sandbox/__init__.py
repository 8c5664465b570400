"""Sandboxed execution of plan steps."""

from forge_cli.sandbox.executor import (
    ExecutionResult,
    SandboxConfig,
    SandboxExecutor,
)

__all__ = ["ExecutionResult", "SandboxConfig", "SandboxExecutor"]
