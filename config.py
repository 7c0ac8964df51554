"""
Service configuration loaded from environment variables (BITESPEED_ prefix).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BITESPEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    database_path: str = "contacts.db"
    # seconds a writer waits for the database lock
    db_timeout: float = Field(default=5.0, gt=0)

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"


settings = Settings()
