"""Risk classifier for shell commands.

Maps a command string to a RiskLevel plus warnings using regex rules.
Rules are evaluated independently; the result is the highest level any rule
reached, with warnings concatenated in rule order.

Classification is best-effort. Obfuscated commands (base64, variable
indirection) slip through, and benign commands that merely mention a verb in
a path or argument are over-classified.
"""

import re
from dataclasses import dataclass

from forge_cli.safety.models import RiskAssessment, RiskLevel


@dataclass(frozen=True)
class RiskRule:
    """A verb family with an optional escalation.

    Attributes:
        name: Short rule identifier.
        trigger: Pattern that puts the command in this family.
        level: Level assigned when ``trigger`` matches.
        escalation: Pattern that raises the level to ``escalated_level``.
        escalated_level: Level assigned when ``escalation`` also matches.
        warning: Warning emitted on escalation, or on trigger when there is
            no escalation pattern.
    """

    name: str
    trigger: re.Pattern[str]
    level: RiskLevel
    warning: str
    escalation: re.Pattern[str] | None = None
    escalated_level: RiskLevel = RiskLevel.HIGH


def _rx(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Evaluated in this order
RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule(
        name="file_operation",
        trigger=_rx(r"\b(rm|rmdir|unlink|del|delete|mv|move|cp|copy)\b"),
        level=RiskLevel.LOW,
        escalation=_rx(
            r"\brm\s+(?:-\w+\s+)*(?:-\w*[rRf]\w*|--recursive|--force)\b"
            r"|\bdel\s+/[qsf]\b"
            r"|\brmdir\s+/s\b"
        ),
        warning="Destructive file operation detected",
    ),
    RiskRule(
        name="system_operation",
        trigger=_rx(r"\b(sudo|su|doas|pkexec|chmod|chown|chgrp|systemctl|service|launchctl)\b"),
        level=RiskLevel.HIGH,
        warning="System-level operation detected",
    ),
    RiskRule(
        name="network_operation",
        trigger=_rx(r"\b(curl|wget|ssh|scp|rsync)\b"),
        level=RiskLevel.MEDIUM,
        escalation=_rx(r"\|\s*(?:sudo\s+)?(bash|sh|zsh|fish|dash|ksh)\b"),
        warning="Network download with shell execution detected",
    ),
    RiskRule(
        name="package_installation",
        trigger=_rx(
            r"\b(apt|apt-get|yum|dnf|pacman|brew|npm|pnpm|yarn|pip|pip3|gem|cargo)\s+install\b"
        ),
        level=RiskLevel.MEDIUM,
        warning="Package installation detected",
    ),
    RiskRule(
        name="process_termination",
        trigger=_rx(r"\b(kill|killall|pkill)\b"),
        level=RiskLevel.MEDIUM,
        escalation=_rx(r"\bkill\s+-(?:9|KILL|SIGKILL)\s+-1\b"),
        warning="System-wide process termination detected",
    ),
)

# Commands that are always high risk, whatever else they do
CRITICAL_PATTERNS: list[tuple[str, str]] = [
    (r"\bformat\s+[a-z]:", "Disk formatting operation"),
    (r"\b(fdisk|sfdisk|gdisk|parted)\b", "Disk partitioning operation"),
    (r"\bmkfs(\.\w+)?\b", "Filesystem creation operation"),
    (r"\bdd\s+.*\bof=/dev/", "Direct disk write operation"),
    (r">\s*/dev/(sd|hd|nvme|vd|disk)\w*", "Raw device write operation"),
    (r"\bchmod\s+(-\w+\s+)*0?777\b", "Overly permissive file permissions"),
    (r"\brm\s+(-[-\w]+\s+)*/\*?(\s|$)", "Root filesystem deletion attempt"),
]

_COMPILED_CRITICAL_PATTERNS = [
    (re.compile(pattern, re.IGNORECASE), desc) for pattern, desc in CRITICAL_PATTERNS
]


class RiskClassifier:
    """Classifies commands into risk levels.

    Pure and deterministic: no I/O, no state beyond the rule tables. A command
    matching no rule is NONE with no warnings, which means uncategorized, not
    blocked.
    """

    def __init__(
        self,
        rules: tuple[RiskRule, ...] = RISK_RULES,
        critical_patterns: list[tuple[re.Pattern[str], str]] | None = None,
    ):
        self.rules = rules
        self.critical_patterns = (
            _COMPILED_CRITICAL_PATTERNS if critical_patterns is None else critical_patterns
        )

    def classify(self, command: str) -> RiskAssessment:
        """Classify a command.

        Args:
            command: Raw shell command string.

        Returns:
            RiskAssessment with the highest level reached and all warnings.
        """
        levels = [RiskLevel.NONE]
        warnings: list[str] = []

        for rule in self.rules:
            if not rule.trigger.search(command):
                continue
            if rule.escalation is None:
                levels.append(rule.level)
                warnings.append(rule.warning)
            elif rule.escalation.search(command):
                levels.append(rule.escalated_level)
                warnings.append(rule.warning)
            else:
                levels.append(rule.level)

        critical = self.critical_matches(command)
        if critical:
            levels.append(RiskLevel.HIGH)
            warnings.extend(critical)

        return RiskAssessment(
            level=RiskLevel.highest(levels),
            warnings=tuple(warnings),
            critical_matches=tuple(critical),
        )

    def critical_matches(self, command: str) -> list[str]:
        """Return the description of every force-high pattern the command matches."""
        return [desc for pattern, desc in self.critical_patterns if pattern.search(command)]


def classify(command: str) -> RiskAssessment:
    """Classify a command with the default rule tables."""
    return _DEFAULT_CLASSIFIER.classify(command)


_DEFAULT_CLASSIFIER = RiskClassifier()
