from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    bot_token: str = Field(..., alias="BOT_TOKEN")
    database_url: str = Field(..., alias="DATABASE_URL")
    tz: str = Field("UTC", alias="TZ")
    storage_timeout: float = Field(10.0, alias="STORAGE_TIMEOUT", gt=0)
    audit_interval_minutes: int = Field(60, alias="AUDIT_INTERVAL_MINUTES", ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
