"""Round-robin API key rotation.

The manager is the single owner of the current key index. Calls are
sequential within one pipeline run, so no locking is done here; a server
issuing concurrent plans would need to guard ``rotate()``.
"""

import json
from pathlib import Path
from typing import Any, Sequence

from forge_cli.errors import ApiError, ErrorCode
from forge_cli.logging import Loggers
from forge_cli.persistence import atomic_write_json

logger = Loggers.llm()


def mask_key(key: str) -> str:
    """Render a key for display, keeping only its last four characters."""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{'*' * 8}{key[-4:]}"


class KeyRotationManager:
    """Holds the configured API keys and the index of the one in use.

    Example:
        keys = KeyRotationManager(["key-a", "key-b"])
        keys.current_key   # "key-a"
        keys.rotate()      # True
        keys.current_key   # "key-b"
    """

    def __init__(self, keys: Sequence[str], state_file: Path | None = None):
        """Initialize the manager.

        Args:
            keys: API keys, in rotation order.
            state_file: Optional file the current index is persisted to and
                restored from.
        """
        self._keys = tuple(keys)
        self.state_file = state_file
        self._index = self._restore_index()

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    @property
    def key_count(self) -> int:
        return len(self._keys)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_key(self) -> str:
        """The key in use.

        Raises:
            ApiError: If no keys are configured.
        """
        if not self._keys:
            raise ApiError("No API keys configured", ErrorCode.NO_API_KEYS)
        return self._keys[self._index]

    def rotate(self) -> bool:
        """Advance to the next key.

        Returns:
            False without changing anything when at most one key is
            configured, True otherwise.
        """
        if len(self._keys) <= 1:
            logger.warning("key_rotation_skipped", key_count=len(self._keys))
            return False

        previous = self._index
        self._index = (self._index + 1) % len(self._keys)
        logger.info(
            "api_key_rotated",
            from_index=previous,
            to_index=self._index,
            key_count=len(self._keys),
        )
        self._persist()
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "total_keys": len(self._keys),
            "current_index": self._index,
            "state_file": str(self.state_file) if self.state_file else None,
        }

    def _restore_index(self) -> int:
        if self.state_file is None or not self._keys or not self.state_file.exists():
            return 0
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            index = int(data.get("current_index", 0))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("key_state_unreadable", path=str(self.state_file), error=str(e))
            return 0
        if not 0 <= index < len(self._keys):
            logger.debug("key_state_out_of_range", index=index, key_count=len(self._keys))
            return 0
        return index

    def _persist(self) -> None:
        if self.state_file is None:
            return
        try:
            atomic_write_json(
                self.state_file,
                {"current_index": self._index, "key_count": len(self._keys)},
            )
        except OSError as e:
            logger.warning("key_state_write_failed", path=str(self.state_file), error=str(e))
