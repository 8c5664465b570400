"""Configuration for forge-cli.

Settings are an explicitly constructed object passed to the components that
need them; there is no module-level instance. Build one with
``load_settings()`` at the start of a command.

Settings Loading Priority (highest to lowest):
    1. Constructor arguments
    2. Environment variables (FORGE_* prefix, plus GEMINI_API_KEY(S) and
       GOOGLE_API_KEY for keys)
    3. Project config (./.forge_cli/settings.json)
    4. User config (~/.forge_cli/settings.json)
    5. Credentials (~/.forge_cli/credentials.json)
    6. .env file
    7. Default values
"""

from pathlib import Path
from typing import Annotated, Any, Literal, Tuple, Type

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from forge_cli.errors import ForgeError

APP_NAME = "forge_cli"
SETTINGS_FILENAME = "settings.json"
CREDENTIALS_FILENAME = "credentials.json"
DENYLIST_FILENAME = "denylist.yaml"


def app_dir() -> Path:
    """User-level application directory (~/.forge_cli)."""
    return Path.home() / f".{APP_NAME}"


def project_dir() -> Path:
    """Project-level application directory (./.forge_cli)."""
    return Path.cwd() / f".{APP_NAME}"


def _get_json_config_source(
    settings_cls: Type[BaseSettings],
    json_file: Path,
) -> PydanticBaseSettingsSource | None:
    """Create a JSON config source if the file exists."""
    if not json_file.exists():
        return None
    return JsonConfigSettingsSource(settings_cls, json_file=json_file)


class ForgeSettings(BaseSettings):
    """Settings for forge-cli.

    Fields are grouped by the component that reads them: model and sampling
    for the planner, retry for the key rotation manager, sandbox for the
    executor, safety for the validator and pipeline.
    """

    model_config = SettingsConfigDict(
        env_prefix="FORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API keys (never saved to settings.json, see SettingsPersistence)
    api_keys: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Gemini API keys, in rotation order",
        validation_alias=AliasChoices("api_keys", "FORGE_API_KEYS", "GEMINI_API_KEYS"),
    )
    gemini_api_key: str | None = Field(
        default=None,
        description="Single Gemini API key",
        validation_alias=AliasChoices("gemini_api_key", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )

    # Model
    model: str = Field(default="gemini-2.5-flash", description="Gemini model name")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, description="Maximum output tokens")
    top_p: float = Field(default=0.95, ge=0.0, le=1.0)
    top_k: int = Field(default=40, ge=1)

    # Retry
    retry_max_retries: int = Field(default=3, description="Retries after the first attempt")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Seconds")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay: float = Field(default=60.0, ge=0.0, description="Seconds")

    # Sandbox
    sandbox_workdir: Path = Field(default=Path("/tmp/forge-work"))
    sandbox_timeout_ms: int = Field(default=30000, description="Default step timeout")
    sandbox_max_output_bytes: int = Field(default=1_000_000, ge=1)
    sandbox_cleanup_age_seconds: int = Field(default=3600, ge=0)

    # Safety
    denylist_file: Path | None = Field(
        default=None,
        description="Denylist policy file (defaults to ~/.forge_cli/denylist.yaml)",
    )
    require_confirmation: bool = Field(
        default=True,
        description="Ask before running medium-risk steps",
    )
    allow_high_risk: bool = Field(
        default=False,
        description="Let --yes auto-approve high-risk steps",
    )
    allow_shell_operators: bool = Field(
        default=False,
        description="Accept commands with pipes, redirections or chaining",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING")
    log_format: Literal["console", "json"] = Field(default="console")

    # Audit
    audit_enabled: bool = Field(default=True)
    audit_dir: Path = Field(default_factory=lambda: app_dir() / "audit")
    audit_retention_days: int = Field(default=90, ge=1)

    key_state_file: Path | None = Field(default_factory=lambda: app_dir() / "key_state.json")

    @field_validator("api_keys", mode="before")
    @classmethod
    def split_keys(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [key.strip() for key in v.split(",") if key.strip()]
        return v

    @field_validator("sandbox_workdir", "denylist_file", "audit_dir", "key_state_file", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Any:
        """Expand ~ in paths."""
        if isinstance(v, str):
            return Path(v).expanduser() if v else None
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources for layered JSON configuration.

        Note: JSON sources are only included if the files exist.
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
        ]

        for json_file in (
            project_dir() / SETTINGS_FILENAME,
            app_dir() / SETTINGS_FILENAME,
            app_dir() / CREDENTIALS_FILENAME,
        ):
            source = _get_json_config_source(settings_cls, json_file)
            if source:
                sources.append(source)

        sources.append(dotenv_settings)
        return tuple(sources)

    @property
    def app_dir(self) -> Path:
        return app_dir()

    @property
    def all_api_keys(self) -> list[str]:
        """Configured keys with duplicates removed, order preserved."""
        keys = list(self.api_keys)
        if self.gemini_api_key:
            keys.append(self.gemini_api_key)
        return list(dict.fromkeys(key for key in keys if key))

    @property
    def has_api_keys(self) -> bool:
        return bool(self.all_api_keys)

    @property
    def resolved_denylist_file(self) -> Path:
        """Policy file to load; a missing file means the built-in policy."""
        return self.denylist_file or self.app_dir / DENYLIST_FILENAME


class SettingsValidationError(ForgeError):
    """Raised when settings validation fails."""


def load_settings(**overrides: Any) -> ForgeSettings:
    """Build a fresh settings object from all sources.

    Args:
        **overrides: Field values taking precedence over every source.
    """
    return ForgeSettings(**overrides)


def validate_settings(settings: ForgeSettings, require_api_keys: bool = True) -> None:
    """Validate settings for runtime use.

    Args:
        settings: Settings to validate
        require_api_keys: Whether a missing API key is an error

    Raises:
        SettingsValidationError: Listing every problem found
    """
    errors = []

    if require_api_keys and not settings.has_api_keys:
        errors.append(
            "No API keys configured. Set GEMINI_API_KEY or run 'forge config add-key <KEY>'."
        )
    if settings.sandbox_timeout_ms <= 0:
        errors.append(f"sandbox_timeout_ms must be positive, got {settings.sandbox_timeout_ms}")
    if settings.retry_max_retries < 0:
        errors.append(f"retry_max_retries must not be negative, got {settings.retry_max_retries}")
    if settings.max_tokens <= 0:
        errors.append(f"max_tokens must be positive, got {settings.max_tokens}")

    if errors:
        raise SettingsValidationError("\n".join(errors))
