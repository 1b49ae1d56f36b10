"""Application configuration using Pydantic settings."""

import json
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from tracksync.exceptions import ConfigurationError

SCHEDULE_ALIASES = {
    "nightly": "0 2 * * *",
    "hourly": "0 * * * *",
}


def default_config_paths() -> list[Path]:
    """Config files checked, in order, when no --config is given."""
    return [
        Path("config.json"),
        Path("tracksync.json"),
        Path.home() / ".config" / "tracksync" / "config.json",
    ]


def _default_backfill_start() -> date:
    return (datetime.now(UTC) - timedelta(days=30)).date()


class POI(BaseModel):
    """Point of interest drawn on the radar display."""

    name: str
    lat: float
    lon: float
    color: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and a JSON file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Weenect API
    weenect_username: str | None = None
    weenect_password: str | None = None
    weenect_base_url: str = "https://apiv4.weenect.com/v4"
    upstream_timeout_seconds: float = 30.0
    upstream_max_retries: int = Field(default=3, ge=1)

    # Database
    database_url: str = "sqlite+aiosqlite:///./tracksync.db"

    # Ingestion settings
    rate_limit: float = Field(default=4.0, gt=0)  # upstream requests per second
    backfill_start_date: date | None = Field(default_factory=_default_backfill_start)
    sync_schedule: str = "0 2 * * *"
    scheduled_sync_timeout_minutes: int = 30
    manual_sync_timeout_minutes: int = 10
    backfill_timeout_minutes: int = 60

    # API settings
    http_enabled: bool = True
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    cors_origins: list[str] = ["*"]
    web_dir: str = "web"  # static radar UI served at / when present

    # Radar display
    home_lat: float = 0.0
    home_lon: float = 0.0
    heatmap_days: int = 60
    pois: list[POI] = []

    # SureHub pet flap (optional)
    surehub_email: str | None = None
    surehub_password: str | None = None
    surehub_base_url: str = "https://app.api.surehub.io"
    presence_cache_minutes: int = 5

    # Environment
    log_level: str = "info"
    debug: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Init kwargs carry the JSON config file, so the environment wins over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def schedule_crontab(self) -> str:
        """Crontab expression for the sync schedule, with aliases resolved."""
        return SCHEDULE_ALIASES.get(self.sync_schedule.strip().lower(), self.sync_schedule)

    @property
    def backfill_start(self) -> datetime | None:
        """Backfill floor as a UTC midnight timestamp."""
        if self.backfill_start_date is None:
            return None
        return datetime.combine(self.backfill_start_date, datetime.min.time(), tzinfo=UTC)

    @property
    def surehub_enabled(self) -> bool:
        return bool(self.surehub_email and self.surehub_password)

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless Weenect credentials are configured."""
        if not self.weenect_username:
            raise ConfigurationError(
                "username is required (set WEENECT_USERNAME or use a config file)"
            )
        if not self.weenect_password:
            raise ConfigurationError(
                "password is required (set WEENECT_PASSWORD or use a config file)"
            )


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"failed to read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"failed to parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a JSON object")
    return data


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from an optional JSON file, .env and the environment.

    An explicit config_path must exist; otherwise the default locations are
    searched and the first existing file is used.
    """
    config_file: Path | None = None
    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"config file {config_file} does not exist")
    else:
        config_file = next((p for p in default_config_paths() if p.exists()), None)

    file_values = _read_config_file(config_file) if config_file else {}

    try:
        return Settings(**file_values)
    except ValueError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
