"""Environment-driven configuration helpers for Crystal Football."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or .env files."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="Crystal Football")
    log_level: str = Field(default="INFO")
    database_url: AnyUrl | str = Field(default="sqlite:///./crystalfootball.db")

    admin_api_key: str = Field(default="", validation_alias="CRYSTAL_ADMIN_API_KEY")
    admin_password: str = Field(default="change_me")

    default_stake_units: float = Field(default=1.0, gt=0.0)
    feed_limit: int = Field(default=200, ge=1, le=1000)
    stats_limit: int = Field(default=500, ge=1, le=5000)
    reminder_days_ahead: int = Field(default=5, ge=1, le=30)

    site_url: str = Field(default="http://localhost:3000")

    email_host: str = Field(default="")
    email_port: int = Field(default=587)
    email_user: str = Field(default="")
    email_password: str = Field(default="")
    email_from: str = Field(default="Crystal Football <no-reply@crystalfootball.app>")

    whatsapp_token: str = Field(default="", validation_alias="WHATSAPP_TOKEN")
    whatsapp_phone_number_id: str = Field(default="", validation_alias="WHATSAPP_PHONE_NUMBER_ID")
    whatsapp_api_base: str = Field(default="https://graph.facebook.com/v18.0")
    whatsapp_rate_limit_per_minute: int = Field(default=30, ge=0)
    admin_whatsapp_e164_list: str = Field(default="", validation_alias="ADMIN_WHATSAPP_E164_LIST")

    @property
    def admin_whatsapp_numbers(self) -> list[str]:
        return [part.strip() for part in self.admin_whatsapp_e164_list.split(",") if part.strip()]

    @property
    def dashboard_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/dashboard"

    @property
    def renew_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/packages"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # type: ignore[call-arg]


def get_admin_api_key() -> str:
    key = os.getenv("CRYSTAL_ADMIN_API_KEY") or get_settings().admin_api_key
    if not key:
        raise RuntimeError(
            "CRYSTAL_ADMIN_API_KEY is not configured. Set it in .env for local dev or in the deploy secrets."
        )
    return key
