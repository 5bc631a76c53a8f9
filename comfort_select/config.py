"""Application configuration powered by Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized configuration object with environment fallbacks."""

    model_config = SettingsConfigDict(env_prefix="COMFORT_", env_file=".env", extra="allow")

    # App
    app_name: str = "comfort-select"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    log_level: str = Field(default="info")
    debug: bool = False

    # Cycle
    cycle_minutes: int = Field(default=5, gt=0)
    timezone: str = Field(default="America/New_York")
    home_lat: float | None = Field(default=None)
    home_lon: float | None = Field(default=None)
    dry_run: bool = Field(default=True)
    http_timeout_s: float = Field(default=10.0, gt=0)

    # LLM
    llm_provider: str = Field(default="openai")
    llm_model: str = Field(default="gpt-5.2")
    llm_api_key: str = Field(default="")
    llm_base_url: str | None = Field(default=None)
    llm_timeout_s: float = Field(default=30.0, gt=0)

    # Prompt assets
    prompt_template_path: str | None = Field(default=None)
    site_config_path: str = Field(default="./config/site.config.json")
    curators_json: str | None = Field(default=None)

    # History / prompt budgets
    history_mode: Literal["full", "window"] = "window"
    history_rows: int = Field(default=200, gt=0)
    history_max_minutes: int | None = Field(default=None)
    history_summary_max_chars: int = Field(default=1200, gt=0)
    prompt_max_chars: int = Field(default=120_000, gt=0)
    sheet_sync_rows: int = Field(default=2000, gt=0)

    # Sensors
    sensor_source: Literal["mock", "local_gateway", "cloud_api"] = "mock"
    sensor_mapping_path: str = Field(default="./config/sensors.mapping.json")
    sensor_mock_path: str = Field(default="./mock/ecowitt.sample.json")
    ecowitt_gateway_url: str | None = Field(default=None)
    ecowitt_cloud_base_url: str = Field(default="https://api.ecowitt.net")
    ecowitt_cloud_application_key: str | None = Field(default=None)
    ecowitt_cloud_api_key: str | None = Field(default=None)
    ecowitt_cloud_device_mac: str | None = Field(default=None)

    # Actuation webhooks
    transom_webhook_url: str | None = Field(default=None)
    transom_webhook_token: str | None = Field(default=None)
    plug_webhook_url: str | None = Field(default=None)
    plug_webhook_token: str | None = Field(default=None)

    # Store
    db_url: str | None = Field(default=None)
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_name: str = Field(default="comfort_select")
    db_user: str = Field(default="comfort")
    db_password: str = Field(default="comfort")
    db_timeout_s: float = Field(default=10.0, gt=0)

    # Spreadsheet mirror
    sheets_spreadsheet_id: str | None = Field(default=None)
    sheets_sheet_name: str = Field(default="TimeSeries")
    sheets_service_account_json: str | None = Field(default=None)
    sheets_access_token: str | None = Field(default=None)

    @field_validator(
        "prompt_template_path",
        "curators_json",
        "db_url",
        "sheets_service_account_json",
        "sheets_access_token",
        mode="before",
    )
    @classmethod
    def _coerce_blank(cls, v: str | None) -> str | None:
        """Treat blank env values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Return a fully qualified async SQLAlchemy database URL."""

        if self.db_url:
            return self.db_url
        from urllib.parse import quote_plus

        return (
            f"postgresql+psycopg://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def sheets_configured(self) -> bool:
        return bool(self.sheets_spreadsheet_id and (self.sheets_service_account_json or self.sheets_access_token))

    @property
    def history_fetch_limit(self) -> int | None:
        """Number of records to read for the prompt; ``None`` reads everything."""
        return self.history_rows if self.history_mode == "window" else None


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
