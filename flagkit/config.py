"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Flagkit"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./flagkit.db"
    db_statement_timeout_ms: int = 5000  # applied to Postgres connections

    # Redis (evaluation stats)
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_seconds: float = 0.5  # stats are best effort, fail fast
    stats_enabled: bool = True

    # API Keys (for initial setup)
    admin_api_key: str = "admin-key-change-in-production"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Listing
    default_page_size: int = 100
    max_page_size: int = 500

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
