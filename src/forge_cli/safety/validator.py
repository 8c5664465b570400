"""Step and plan validation.

Combines the denylist policy, the risk classifier and the force-high pattern
table into a ValidationResult per step:

1. Denylist substrings and patterns decide ``allowed``.
2. Shell control operators are rejected, since the sandbox never runs a shell.
3. The classifier raises ``risk_level`` above the step's declared level.
4. Force-high patterns and denylist high-risk entries set ``risk_level=high``
   and ``requires_confirmation``, regardless of ``allowed``.

Whether the remaining steps of a plan with a blocked step should run is not
decided here; see ``ExecutionPolicy`` in ``forge_cli.pipeline``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

from forge_cli.errors import ValidationError
from forge_cli.logging import Loggers
from forge_cli.safety.classifier import RiskClassifier
from forge_cli.safety.denylist import Denylist, load_denylist
from forge_cli.safety.models import PlanValidation, RiskLevel, ValidationResult

if TYPE_CHECKING:
    from forge_cli.planning.plan import Plan, Step

logger = Loggers.safety()

_OPERATOR_RE = re.compile(r"\$\(|`|[();<>|&]+")

SUGGEST_BLOCKED = "Remove the blocked operation or run it manually after review"
SUGGEST_SHELL = "Split the command into separate steps, one program per step"
SUGGEST_DELETE = "List the target first and narrow the path before deleting"
SUGGEST_DOWNLOAD = "Download the script to a file and review it before running"
SUGGEST_BACKUP = "Back up affected files before running this step"


def _shell_syntax(command: str) -> str:
    """``command`` with quoted and backslash-escaped characters blanked out.

    ``$(`` and backticks stay visible inside double quotes, where a shell
    still expands them.

    Raises:
        ValueError: If a quote is not closed or the command ends in a backslash.
    """
    chars: list[str] = []
    quote = ""
    i = 0
    while i < len(command):
        char = command[i]
        if quote == "'":
            if char == "'":
                quote = ""
            chars.append(" ")
        elif char == "\\":
            if i + 1 == len(command):
                raise ValueError("No escaped character")
            chars.append("  ")
            i += 1
        elif quote == '"':
            if char == '"':
                quote = ""
                chars.append(" ")
            elif char in "$`" or (char == "(" and chars[-1:] == ["$"]):
                chars.append(char)
            else:
                chars.append(" ")
        elif char in "'\"":
            quote = char
            chars.append(" ")
        else:
            chars.append(char)
        i += 1
    if quote:
        raise ValueError("No closing quotation")
    return "".join(chars)


def find_shell_operators(command: str) -> list[str]:
    """Return the shell control operators in ``command``, in order of appearance.

    Quoted and escaped characters are not operators, so ``grep 'a|b'`` and a
    ``find -exec`` terminated by an escaped semicolon are plain commands.

    Raises:
        ValueError: If the command has unbalanced quotes.
    """
    operators: list[str] = []
    for match in _OPERATOR_RE.finditer(_shell_syntax(command)):
        if match.group() not in operators:
            operators.append(match.group())
    return operators


class Validator:
    """Validates steps and plans against the denylist and risk rules.

    The denylist is loaded lazily on first use and cached for the lifetime of
    the validator; call ``initialize()`` to re-read it.

    Example:
        validator = Validator(Path("~/.forge_cli/denylist.yaml"))
        verdict = validator.validate_plan(plan)
        if not verdict.allowed:
            ...
    """

    def __init__(
        self,
        denylist_path: Path | str | None = None,
        *,
        denylist: Denylist | None = None,
        classifier: RiskClassifier | None = None,
        allow_shell_operators: bool = False,
    ):
        """Initialize the validator.

        Args:
            denylist_path: Policy file; None selects the built-in policy.
            denylist: Pre-loaded policy, used instead of reading a file.
            classifier: Risk classifier (defaults to the built-in rules).
            allow_shell_operators: Accept commands containing pipes,
                redirections and command chaining.
        """
        self.denylist_path = Path(denylist_path).expanduser() if denylist_path else None
        self.classifier = classifier or RiskClassifier()
        self.allow_shell_operators = allow_shell_operators
        self._denylist = denylist

    @property
    def denylist(self) -> Denylist:
        """The active policy, loading it on first access."""
        if self._denylist is None:
            self.initialize()
        assert self._denylist is not None
        return self._denylist

    def initialize(self) -> Denylist:
        """(Re)load the denylist policy."""
        try:
            self._denylist = load_denylist(self.denylist_path)
        except Exception as e:
            raise ValidationError(f"Failed to initialize validator: {e}") from e
        logger.debug(
            "validator_initialized",
            source=str(self._denylist.source) if self._denylist.source else "default",
        )
        return self._denylist

    def validate_step(self, step: Step) -> ValidationResult:
        """Validate one step.

        Args:
            step: Step to validate. It is not modified.

        Returns:
            A fresh ValidationResult.

        Raises:
            ValidationError: If the step could not be evaluated.
        """
        return self.validate_command(
            step.command,
            step_id=step.id,
            declared_risk=step.risk_level,
            requires_confirmation=step.requires_confirmation,
        )

    def validate_command(
        self,
        command: str,
        *,
        step_id: str = "command",
        declared_risk: RiskLevel = RiskLevel.NONE,
        requires_confirmation: bool = False,
    ) -> ValidationResult:
        """Validate a bare command string."""
        denylist = self.denylist
        try:
            result = ValidationResult(
                step_id=step_id,
                command=command,
                risk_level=declared_risk,
                requires_confirmation=requires_confirmation,
            )

            reasons = denylist.blocked_reasons(command)
            if reasons:
                result.allowed = False
                result.blocked_reasons.extend(reasons)
                result.suggestions.append(SUGGEST_BLOCKED)

            if not self.allow_shell_operators:
                self._check_shell_syntax(command, result)

            assessment = self.classifier.classify(command)
            result.risk_level = RiskLevel.highest((result.risk_level, assessment.level))
            result.warnings.extend(assessment.warnings)

            high_risk = denylist.high_risk_matches(command)
            if assessment.is_critical or high_risk:
                result.risk_level = RiskLevel.HIGH
                result.requires_confirmation = True
                result.warnings.extend(f"High-risk operation: {risky}" for risky in high_risk)

            self._add_suggestions(result)
        except Exception as e:
            logger.error("step_validation_failed", step_id=step_id, error=str(e))
            raise ValidationError(f"Validation failed for step {step_id}: {e}") from e

        logger.debug(
            "step_validated",
            step_id=step_id,
            allowed=result.allowed,
            risk_level=result.risk_level.value,
            warnings=len(result.warnings),
        )
        return result

    def validate_plan(self, plan: Plan) -> PlanValidation:
        """Validate every step of a plan, in order.

        Returns:
            PlanValidation with ``allowed`` as the AND of the steps and
            ``risk_level`` as their maximum.
        """
        validation = PlanValidation.from_results(
            self.validate_step(step) for step in plan.steps
        )
        logger.info(
            "plan_validated",
            plan_id=plan.id,
            allowed=validation.allowed,
            risk_level=validation.risk_level.value,
            blocked_steps=validation.summary.blocked_steps,
            high_risk_steps=validation.summary.high_risk_steps,
        )
        return validation

    def _check_shell_syntax(self, command: str, result: ValidationResult) -> None:
        try:
            operators = find_shell_operators(command)
        except ValueError as e:
            result.allowed = False
            result.blocked_reasons.append(f"Command could not be parsed: {e}")
            return
        if operators:
            result.allowed = False
            result.blocked_reasons.append(
                "Shell operators are not supported: " + " ".join(operators)
            )
            result.suggestions.append(SUGGEST_SHELL)

    def _add_suggestions(self, result: ValidationResult) -> None:
        warnings = " ".join(result.warnings).lower()
        if "destructive" in warnings or "deletion" in warnings:
            result.suggestions.append(SUGGEST_DELETE)
        if "shell execution" in warnings:
            result.suggestions.append(SUGGEST_DOWNLOAD)
        if result.is_high_risk and SUGGEST_BACKUP not in result.suggestions:
            result.suggestions.append(SUGGEST_BACKUP)
