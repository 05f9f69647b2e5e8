from __future__ import annotations

import logging
import string
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Gift Card Ledger"
    database_url: str = "sqlite:///giftcard_ledger.db"
    log_level: str = "INFO"

    code_length: int = Field(default=12, ge=4)
    code_alphabet: str = Field(
        default=string.ascii_uppercase + string.digits, min_length=2
    )
    code_max_attempts: int = Field(default=10, ge=1)
    conflict_max_retries: int = Field(default=3, ge=0)
    statement_page_size: int = Field(default=50, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GIFTCARD_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
