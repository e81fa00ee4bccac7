"""Application settings loaded from environment variables."""
from functools import lru_cache
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Opportunity Store (external REST service)
    opportunity_api_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the opportunity store API"
    )
    opportunity_api_token: str = Field(default="", description="Bearer token for the opportunity store")
    request_timeout_seconds: float = Field(default=15.0, description="Timeout for opportunity store calls")

    # Database (audit events only; generated documents are never stored)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/fax_audit.db",
        description="Database connection URL"
    )

    # Application
    app_env: str = Field(default="development", description="Application environment")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    cors_origins: List[str] = Field(
        default=["*"],
        description="Allowed CORS origins"
    )

    # Fax history ("fax queue")
    fax_history_capacity: int = Field(default=100, ge=1, description="Max generated faxes kept in history")
    fax_overdue_days: int = Field(default=3, ge=0, description="Days before a pending fax needs follow up")
    fax_max_open_flows: int = Field(default=200, ge=1, description="Max fax send flows held in memory")

    # Demo account shows full patient names; every other deployment masks them
    demo_account: bool = Field(default=False, description="Show unmasked patient names")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
