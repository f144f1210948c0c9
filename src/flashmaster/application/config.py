from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from flashmaster.domain.constants import (
    BACKUPS_DIR_NAME,
    DEFAULT_API_HOST,
    DEFAULT_API_PORT,
    DEFAULT_MAX_BACKUPS,
    DEFAULT_REVIEW_MAX,
    SQLITE_FILE_NAME,
    STORE_FILE_NAME,
)

StoreKind = Literal["json", "sqlite", "postgres", "memory"]


class AppConfig(BaseSettings):
    """
    Configuration model for FlashMaster.
    Supports loading from:
    1. Environment variables (FLASHMASTER_*)
    2. Config file (~/.config/flashmaster/config.toml)
    3. Manual overrides (CLI)

    Built once at startup and passed explicitly to whatever needs it.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASHMASTER_",
        extra="ignore",
    )

    # Storage
    store: StoreKind = "json"
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/flashmaster")
    json_path: Path | None = None
    backups_dir: Path | None = None
    max_backups: int = Field(default=DEFAULT_MAX_BACKUPS, ge=1)
    db_path: Path | None = None
    database_url: str | None = None

    # HTTP API
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT

    # Review session
    review_max: int = Field(default=DEFAULT_REVIEW_MAX, ge=1)

    verbose: int = 0

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

        toml_files = [
            Path.home() / ".config/flashmaster/config.toml",
            Path.home() / ".flashmaster.toml",
        ]

        # First existing file wins
        toml_file = next((f for f in toml_files if f.exists()), None)

        # Later sources have lower priority: overrides > env > file
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("data_dir", "json_path", "backups_dir", "db_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser()

    @field_validator("database_url")
    @classmethod
    def check_database_url(cls, v: str | None) -> str | None:
        if v is not None and "://" not in v:
            raise ValueError("database_url must be a SQLAlchemy URL such as postgresql+psycopg://...")
        return v


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/flashmaster/config.toml (if exists)
    3. Environment variables (FLASHMASTER_*)
    4. cli_overrides (passed from Typer or the API)

    Derived paths that were not set explicitly are placed under ``data_dir``.
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.json_path is None:
        config.json_path = config.data_dir / STORE_FILE_NAME
    if config.backups_dir is None:
        config.backups_dir = config.json_path.parent / BACKUPS_DIR_NAME
    if config.db_path is None:
        config.db_path = config.data_dir / SQLITE_FILE_NAME

    return config
