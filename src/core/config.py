"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    # ── Postgres ─────────────────────────────────────────
    postgres_user: str = "rolling"
    postgres_password: str = "rolling_pw"
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # ── Query execution ──────────────────────────────────
    query_timeout_ms: int = 300_000
    sql_fetch_size: int = 1_000
    datasource_catalog_path: str = str(_PROJECT_ROOT / "semantic_layer" / "datasources.yml")

    # ── Request log ──────────────────────────────────────
    request_log_enabled: bool = True
    request_log_strict: bool = False  # True -> sink failures abort the query
    request_log_table: str = "rolling_average_request_logs"

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
