from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from flashsync.domain.constants import (
    BACKOFF_BASE_DELAY,
    BACKOFF_MAX_ATTEMPTS,
    DEFAULT_REVIEW_CARDS,
    MAX_SYNC_RETRY_ATTEMPTS,
    REQUEST_TIMEOUT,
    REVIEW_SESSION_OPTIONS,
    SYNC_INTERVAL,
    SYNC_RETRY_DELAY,
)

CONFIG_FILE = Path.home() / ".config/flashsync/config.toml"


class AppConfig(BaseSettings):
    """
    Configuration model for flashsync.
    Supports loading from:
    1. Environment variables (FLASHSYNC_*)
    2. Config file (~/.config/flashsync/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHSYNC_",
        toml_file=CONFIG_FILE,
        extra="ignore",
    )

    # Account / store
    account_id: str = "local"
    store_backend: Literal["memory", "file", "http"] = "file"
    store_url: str = "http://127.0.0.1:8780"
    store_path: Path = Field(default_factory=lambda: Path.home() / ".config/flashsync/store.json")
    store_token: str | None = None

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "data")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/flashsync/logs")

    # Sync
    sync_delay: float = SYNC_INTERVAL
    retry_delay: float = SYNC_RETRY_DELAY
    max_retry_attempts: int = MAX_SYNC_RETRY_ATTEMPTS
    backoff_base_delay: float = BACKOFF_BASE_DELAY
    backoff_max_attempts: int = BACKOFF_MAX_ATTEMPTS
    request_timeout: float = REQUEST_TIMEOUT

    # Review
    session_size: int = DEFAULT_REVIEW_CARDS
    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        if CONFIG_FILE.exists():
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=CONFIG_FILE),
            )
        return (init_settings, env_settings)

    @field_validator("store_path", "data_dir", "log_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("session_size")
    @classmethod
    def check_session_size(cls, v: int) -> int:
        if v not in REVIEW_SESSION_OPTIONS:
            raise ValueError(f"session_size must be one of {REVIEW_SESSION_OPTIONS}")
        return v


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/flashsync/config.toml (if exists)
    3. Environment variables (FLASHSYNC_*)
    4. cli_overrides (None values are ignored)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
