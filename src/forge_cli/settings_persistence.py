"""Settings persistence utilities.

Non-secret settings are saved to ./.forge_cli/settings.json (project config)
by default. API keys are kept apart in ~/.forge_cli/credentials.json, which is
written with owner-only permissions. All writes are write-then-rename.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from forge_cli.config import (
    APP_NAME,
    CREDENTIALS_FILENAME,
    SETTINGS_FILENAME,
    ForgeSettings,
    SettingsValidationError,
)
from forge_cli.logging import Loggers
from forge_cli.persistence import atomic_write_json

logger = Loggers.config()

# Fields that should never be saved to settings.json (secrets)
SECRET_FIELDS = frozenset({
    "api_keys",
    "gemini_api_key",
})

CREDENTIALS_MODE = 0o600


class SettingsPersistence:
    """Manages loading and saving settings to JSON files.

    Loading priority (highest to lowest):
        1. Project config (./.forge_cli/settings.json)
        2. User config (~/.forge_cli/settings.json)

    Saving: Always saves to project config unless a path is given.
    """

    def __init__(self, app_name: str = APP_NAME):
        """Initialize persistence manager.

        Args:
            app_name: Application name used for config directories
        """
        self.app_name = app_name

    @property
    def project_config_path(self) -> Path:
        """Get path to project config file (./.forge_cli/settings.json)."""
        return Path.cwd() / f".{self.app_name}" / SETTINGS_FILENAME

    @property
    def user_config_path(self) -> Path:
        """Get path to user config file (~/.forge_cli/settings.json)."""
        return Path.home() / f".{self.app_name}" / SETTINGS_FILENAME

    @property
    def credentials_path(self) -> Path:
        """Get path to the credentials file (~/.forge_cli/credentials.json)."""
        return Path.home() / f".{self.app_name}" / CREDENTIALS_FILENAME

    @staticmethod
    def settable_fields() -> list[str]:
        """Fields that ``set_value`` accepts."""
        return sorted(name for name in ForgeSettings.model_fields if name not in SECRET_FIELDS)

    def save(
        self,
        settings: ForgeSettings,
        exclude_defaults: bool = True,
        path: Path | None = None,
    ) -> Path:
        """Save settings to JSON config file.

        Secrets (API keys) are never saved here.

        Args:
            settings: Settings instance to save
            exclude_defaults: If True, only save non-default values
            path: Optional custom path (defaults to project_config_path)

        Returns:
            Path to the saved config file
        """
        target_path = path or self.project_config_path
        data = settings.model_dump(
            mode="json",
            exclude=set(SECRET_FIELDS),
            exclude_defaults=exclude_defaults,
            exclude_none=True,
        )
        atomic_write_json(target_path, data)
        logger.debug("settings_saved", path=str(target_path), fields=sorted(data))
        return target_path

    def set_value(self, key: str, value: Any, path: Path | None = None) -> Path:
        """Validate and persist a single setting.

        Raises:
            SettingsValidationError: If the key is unknown, secret or the
                value does not validate.
        """
        if key in SECRET_FIELDS:
            raise SettingsValidationError(
                f"'{key}' is a secret; use 'forge config add-key' instead"
            )
        if key not in ForgeSettings.model_fields:
            raise SettingsValidationError(
                f"Unknown setting '{key}'. Known settings: {', '.join(self.settable_fields())}"
            )
        try:
            validated = ForgeSettings(**{key: value})
        except PydanticValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise SettingsValidationError(f"Invalid value for '{key}': {messages}") from e

        target_path = path or self.project_config_path
        data = self.load(target_path)
        data[key] = validated.model_dump(mode="json", include={key})[key]
        atomic_write_json(target_path, data)
        logger.info("setting_updated", key=key, path=str(target_path))
        return target_path

    def load(self, path: Path | None = None) -> dict[str, Any]:
        """Load settings from JSON config file.

        If no path is specified, tries project config first, then user config.

        Args:
            path: Optional custom path (if not specified, uses fallback order)

        Returns:
            Dictionary of settings from file, or empty dict if no file exists
        """
        if path is not None:
            if not path.exists():
                return {}
            with open(path, encoding="utf-8") as f:
                return json.load(f)

        for config_path in [self.project_config_path, self.user_config_path]:
            if config_path.exists():
                with open(config_path, encoding="utf-8") as f:
                    return json.load(f)

        return {}

    def load_api_keys(self) -> list[str]:
        """Keys stored in the credentials file."""
        data = self.load(self.credentials_path)
        keys = data.get("api_keys") or []
        if isinstance(keys, str):
            keys = [keys]
        return [str(key) for key in keys if key]

    def save_api_keys(self, keys: list[str]) -> Path:
        """Replace the stored keys, keeping other credential entries."""
        data = self.load(self.credentials_path)
        data["api_keys"] = list(dict.fromkeys(key for key in keys if key))
        atomic_write_json(self.credentials_path, data, mode=CREDENTIALS_MODE)
        logger.info("api_keys_saved", count=len(data["api_keys"]))
        return self.credentials_path

    def add_api_key(self, key: str) -> list[str]:
        """Append a key unless it is already stored.

        Returns:
            The stored keys after the change.
        """
        key = key.strip()
        if not key:
            raise SettingsValidationError("API key must not be empty")
        keys = self.load_api_keys()
        if key not in keys:
            keys.append(key)
            self.save_api_keys(keys)
        return keys

    def remove_api_key(self, index: int) -> str:
        """Remove the key at ``index``.

        Returns:
            The removed key.

        Raises:
            SettingsValidationError: If there is no key at that index.
        """
        keys = self.load_api_keys()
        if not 0 <= index < len(keys):
            raise SettingsValidationError(
                f"No API key at index {index} ({len(keys)} stored)"
            )
        removed = keys.pop(index)
        self.save_api_keys(keys)
        return removed
