"""forge-cli: natural-language requests to validated, sandboxed shell plans.

The pipeline is built from explicitly constructed parts:

- Planner: asks a generative backend for a JSON plan and parses it
- Validator: applies the denylist policy and the risk classifier per step
- SandboxExecutor: runs approved steps without a shell, under a timeout
- GeminiBackend: Gemini completions with retries and API key rotation

Example:
    settings = load_settings()
    pipeline = Pipeline.from_settings(settings, confirm=ask_user)
    report = await pipeline.run("show the five largest files here")
"""

__version__ = "0.1.0"

from forge_cli.config import ForgeSettings, SettingsValidationError, load_settings, validate_settings
from forge_cli.errors import (
    ApiError,
    ErrorCode,
    ForgeError,
    PlanParseError,
    RetryExhaustedError,
    SandboxError,
    ValidationError,
)
from forge_cli.pipeline import ExecutionPolicy, Pipeline, PipelineReport, StepOutcome, StepReport
from forge_cli.planning import Plan, Planner, PlanStore, Step
from forge_cli.safety import PlanValidation, RiskLevel, ValidationResult, Validator
from forge_cli.sandbox import ExecutionResult, SandboxConfig, SandboxExecutor

__all__ = [
    "__version__",
    "ApiError",
    "ErrorCode",
    "ExecutionPolicy",
    "ExecutionResult",
    "ForgeError",
    "ForgeSettings",
    "Pipeline",
    "PipelineReport",
    "Plan",
    "PlanParseError",
    "PlanStore",
    "PlanValidation",
    "Planner",
    "RetryExhaustedError",
    "RiskLevel",
    "SandboxConfig",
    "SandboxError",
    "SandboxExecutor",
    "SettingsValidationError",
    "Step",
    "StepOutcome",
    "StepReport",
    "ValidationError",
    "ValidationResult",
    "Validator",
    "load_settings",
    "validate_settings",
]
