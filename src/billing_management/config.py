from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process configuration, read from `BILLING_*` environment variables or a
    `.env` file. Without `mongo_uri` the in-memory backend is used.
    """

    model_config = SettingsConfigDict(env_prefix="BILLING_", env_file=".env", extra="ignore")

    mongo_uri: Optional[str] = None
    mongo_db: str = "billing_management"
    mongo_transactions: bool = True

    plan_catalog: str = "builder"
    plan_catalog_path: Optional[Path] = None

    ledger_log_path: Path = Path("logs/billing_ledger.log")
    log_level: str = "INFO"

    api_prefix: str = "/api"
    user_id_header: str = "X-User-Id"
    request_id_header: str = "X-Request-Id"


@lru_cache
def get_settings() -> Settings:
    return Settings()
