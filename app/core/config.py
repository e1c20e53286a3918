"""
Configuration module - loads all env vars using pydantic-settings.
This is the SINGLE SOURCE OF TRUTH for all config values.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "careerboost"
    postgres_password: str = "password"
    postgres_db: str = "careerboost"
    run_migrations_on_startup: bool = False

    # JWT Auth (7 days)
    jwt_secret_key: str = "change-this-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 10080

    # Account activation links
    invitation_expire_hours: int = 24

    # France Travail aggregation
    france_travail_sync_enabled: bool = False
    france_travail_sync_interval_hours: float = 6
    france_travail_max_offers_per_sync: int = 500
    france_travail_client_id: str = ""
    france_travail_client_secret: str = ""

    # AI text generation (OpenAI-compatible API, e.g. DeepSeek)
    ai_api_key: str = ""
    ai_base_url: str = "https://api.deepseek.com"
    ai_model: str = "deepseek-chat"

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL"""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
