"""Audit trail for gated plan steps.

Every step that reaches the gate is recorded, whether it was blocked, declined
or executed. Entries are written as JSONL with one file per day.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from forge_cli.logging import Loggers
from forge_cli.planning.plan import Step
from forge_cli.safety.models import RiskLevel

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings
    from forge_cli.sandbox.executor import ExecutionResult

logger = Loggers.pipeline()

LOG_FILE_PREFIX = "forge_audit_"


@dataclass
class AuditEntry:
    """A single audit log entry for a gated step.

    Attributes:
        timestamp: When the gate decision was made (ISO format).
        session_id: Identifier of the CLI invocation.
        plan_id: Plan the step belongs to.
        step_id: Step identifier.
        command: Command as written in the step.
        risk_level: Risk level after validation.
        outcome: blocked, declined or executed.
        approval: How the step was approved (auto, confirmed, auto_approved).
        exit_code: Exit code if executed.
        duration_ms: Execution duration in milliseconds.
        stdout_preview: First N chars of stdout.
        stderr_preview: First N chars of stderr.
        blocked_reasons: Reasons the step was blocked.
        warnings: Validation warnings.
        working_dir: Directory the step ran in.
    """

    timestamp: str
    session_id: str
    plan_id: str | None
    step_id: str
    command: str
    risk_level: str
    outcome: str

    approval: str | None = None
    exit_code: int | None = None
    duration_ms: int | None = None
    stdout_preview: str = ""
    stderr_preview: str = ""
    blocked_reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    working_dir: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {k: v for k, v in asdict(self).items() if v is not None and v != [] and v != ""}


@dataclass
class AuditConfig:
    """Configuration for audit logging.

    Attributes:
        enabled: Whether audit logging is enabled.
        log_dir: Directory for audit logs.
        retention_days: How long to keep logs.
        max_preview_length: Maximum length for stdout/stderr previews.
    """

    enabled: bool = True
    log_dir: Path = field(default_factory=lambda: Path.home() / ".forge_cli" / "audit")
    retention_days: int = 90
    max_preview_length: int = 500

    @classmethod
    def from_settings(cls, settings: "ForgeSettings") -> "AuditConfig":
        return cls(
            enabled=settings.audit_enabled,
            log_dir=settings.audit_dir,
            retention_days=settings.audit_retention_days,
        )

    def get_log_dir(self) -> Path:
        """Get resolved log directory path."""
        return Path(self.log_dir).expanduser()


class AuditLogger:
    """Writes audit entries in JSONL format with daily rotation.

    Write failures are logged and never interrupt the pipeline.
    """

    def __init__(self, config: AuditConfig | None = None, session_id: str | None = None):
        """Initialize the audit logger.

        Args:
            config: Audit configuration.
            session_id: Session identifier for grouping entries.
        """
        self.config = config or AuditConfig()
        self.session_id = session_id or uuid.uuid4().hex[:8]

    def log_file(self, date: datetime | None = None) -> Path:
        """Get the log file path for a given date."""
        date = date or datetime.now()
        return self.config.get_log_dir() / f"{LOG_FILE_PREFIX}{date.strftime('%Y-%m-%d')}.jsonl"

    def log(self, entry: AuditEntry) -> None:
        """Append an entry to today's log file."""
        if not self.config.enabled:
            return

        log_file = self.log_file()
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
        except OSError as e:
            logger.warning("audit_write_failed", path=str(log_file), error=str(e))

    def log_step(
        self,
        step: Step,
        outcome: str,
        risk_level: RiskLevel,
        *,
        plan_id: str | None = None,
        approval: str | None = None,
        result: "ExecutionResult | None" = None,
        blocked_reasons: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> AuditEntry:
        """Record the gate decision for one step.

        Convenience method that creates and logs an AuditEntry.

        Returns:
            The created AuditEntry.
        """
        max_len = self.config.max_preview_length
        entry = AuditEntry(
            timestamp=datetime.now().isoformat(),
            session_id=self.session_id,
            plan_id=plan_id,
            step_id=step.id,
            command=step.command,
            risk_level=risk_level.value,
            outcome=outcome,
            approval=approval,
            blocked_reasons=list(blocked_reasons or []),
            warnings=list(warnings or []),
        )
        if result is not None:
            entry.exit_code = result.exit_code
            entry.duration_ms = result.duration_ms
            entry.stdout_preview = result.stdout[:max_len]
            entry.stderr_preview = result.stderr[:max_len]
            entry.working_dir = str(result.working_directory)

        self.log(entry)
        return entry

    def cleanup_old_logs(self) -> int:
        """Remove logs older than retention period.

        Returns:
            Number of files removed.
        """
        log_dir = self.config.get_log_dir()
        if not log_dir.exists():
            return 0

        cutoff = datetime.now() - timedelta(days=self.config.retention_days)
        removed = 0

        for log_file in log_dir.glob(f"{LOG_FILE_PREFIX}*.jsonl"):
            try:
                file_date = datetime.strptime(log_file.stem.removeprefix(LOG_FILE_PREFIX), "%Y-%m-%d")
                if file_date < cutoff:
                    log_file.unlink()
                    removed += 1
            except (ValueError, OSError):
                continue

        if removed:
            logger.debug("audit_logs_removed", count=removed)
        return removed
