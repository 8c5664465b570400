"""File-backed plan store.

A saved plan is the camelCase JSON document produced by ``Plan.to_dict()``,
so it can be reviewed or edited by hand before ``forge run --plan``.

Example:
    >>> store = PlanStore(Path("plan.json"))
    >>> store.save(plan)
    >>> store.load() == plan
    True
"""

import json
from pathlib import Path

from forge_cli.errors import PlanParseError
from forge_cli.logging import Loggers
from forge_cli.persistence import atomic_write_json
from forge_cli.planning.plan import Plan

logger = Loggers.planning()


class PlanStore:
    """Persists one plan to a JSON file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, plan: Plan) -> Path:
        """Write the plan, replacing any previous content atomically.

        Returns:
            The path written to.
        """
        atomic_write_json(self.path, plan.to_dict())
        logger.debug("plan_saved", plan_id=plan.id, path=str(self.path))
        return self.path

    def load(self) -> Plan:
        """Read the stored plan.

        Raises:
            FileNotFoundError: If nothing was saved at this path.
            PlanParseError: If the file is not a valid plan document.
        """
        text = self.path.read_text(encoding="utf-8")
        try:
            plan = Plan.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            raise PlanParseError(f"Invalid plan file {self.path}: {e}", raw_response=text) from e
        logger.debug("plan_loaded", plan_id=plan.id, path=str(self.path))
        return plan
