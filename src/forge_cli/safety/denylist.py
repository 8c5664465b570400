"""Denylist policy loading.

A policy document (YAML or JSON) has three lists::

    commands:   # substrings that block a command outright
      - rm -rf /
    patterns:   # regular expressions that block a command
      - 'rm\\s+-rf\\s+/'
    highRisk:   # substrings that force confirmation
      - git reset --hard

A missing or unreadable document falls back to the built-in policy. Invalid
regular expressions are logged and skipped.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from forge_cli.logging import Loggers

logger = Loggers.safety()


DEFAULT_COMMANDS: tuple[str, ...] = (
    "rm -rf /",
    "rm -rf /*",
    "rm -rf ~",
    "rm -rf $HOME",
    "dd if=/dev/zero",
    "mkfs",
    "fdisk",
    "sudo rm",
    "chmod 777",
    "curl | bash",
    "wget | sh",
)

DEFAULT_PATTERNS: tuple[str, ...] = (
    r"rm\s+-rf\s+/",
    r"chmod\s+777\s+",
    r"\|\s*bash\b",
    r"\|\s*sh\b",
    r">\s*/dev/sd[a-z]",
)

DEFAULT_HIGH_RISK: tuple[str, ...] = (
    "git reset --hard",
    "git clean -fd",
    "npm ci",
    "docker system prune",
)

_HIGH_RISK_KEYS = ("highRisk", "high_risk", "high-risk")


@dataclass(frozen=True)
class Denylist:
    """A loaded, read-only denylist policy.

    Attributes:
        commands: Substrings that block a command.
        patterns: Regex sources as written in the policy.
        high_risk: Substrings that force high risk and confirmation.
        source: File the policy came from, None for the built-in policy.
    """

    commands: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    high_risk: tuple[str, ...] = ()
    source: Path | None = None
    compiled_patterns: tuple[tuple[str, re.Pattern[str]], ...] = field(
        default=(), repr=False, compare=False
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Path | None = None) -> "Denylist":
        """Build a policy from a parsed document."""
        high_risk: Any = None
        for key in _HIGH_RISK_KEYS:
            if key in data:
                high_risk = data[key]
                break

        patterns = _string_list(data.get("patterns"), "patterns")
        return cls(
            commands=_string_list(data.get("commands"), "commands"),
            patterns=patterns,
            high_risk=_string_list(high_risk, "highRisk"),
            source=source,
            compiled_patterns=_compile_patterns(patterns),
        )

    @classmethod
    def default(cls) -> "Denylist":
        """The built-in policy."""
        return cls(
            commands=DEFAULT_COMMANDS,
            patterns=DEFAULT_PATTERNS,
            high_risk=DEFAULT_HIGH_RISK,
            compiled_patterns=_compile_patterns(DEFAULT_PATTERNS),
        )

    @property
    def is_default(self) -> bool:
        return self.source is None

    def blocked_reasons(self, command: str) -> list[str]:
        """Reasons this policy blocks ``command``; empty when allowed."""
        reasons = [
            f"Blocked command pattern: {blocked}"
            for blocked in self.commands
            if blocked in command
        ]
        reasons.extend(
            f"Blocked by pattern: {source}"
            for source, pattern in self.compiled_patterns
            if pattern.search(command)
        )
        return reasons

    def high_risk_matches(self, command: str) -> list[str]:
        """High-risk substrings contained in ``command``."""
        return [risky for risky in self.high_risk if risky in command]

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "commands": list(self.commands),
            "patterns": list(self.patterns),
            "highRisk": list(self.high_risk),
        }


def _string_list(value: Any, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        logger.warning("denylist_section_ignored", section=key, type=type(value).__name__)
        return ()
    items = []
    for item in value:
        if isinstance(item, str) and item:
            items.append(item)
        else:
            logger.warning("denylist_entry_ignored", section=key, entry=repr(item))
    return tuple(items)


def _compile_patterns(patterns: tuple[str, ...]) -> tuple[tuple[str, re.Pattern[str]], ...]:
    compiled = []
    for source in patterns:
        try:
            compiled.append((source, re.compile(source, re.IGNORECASE)))
        except re.error as e:
            logger.warning("denylist_pattern_invalid", pattern=source, error=str(e))
    return tuple(compiled)


def load_denylist(path: Path | str | None) -> Denylist:
    """Load a denylist policy, falling back to the built-in one.

    Never raises for a missing, unreadable or malformed file.

    Args:
        path: Policy file (YAML or JSON). None selects the built-in policy.

    Returns:
        The loaded Denylist.
    """
    if path is None:
        return Denylist.default()

    path = Path(path).expanduser()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.info("denylist_not_found_using_defaults", path=str(path))
        return Denylist.default()
    except (OSError, yaml.YAMLError) as e:
        logger.warning("denylist_unreadable_using_defaults", path=str(path), error=str(e))
        return Denylist.default()

    if not isinstance(data, dict):
        logger.warning(
            "denylist_malformed_using_defaults",
            path=str(path),
            type=type(data).__name__,
        )
        return Denylist.default()

    denylist = Denylist.from_dict(data, source=path)
    logger.debug(
        "denylist_loaded",
        path=str(path),
        commands=len(denylist.commands),
        patterns=len(denylist.compiled_patterns),
        high_risk=len(denylist.high_risk),
    )
    return denylist
