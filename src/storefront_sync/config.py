"""Storefront Sync — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Durable storage ───────────────────────────────────
    storage_url: str = "sqlite+aiosqlite:///./storefront_cache.db"
    session_key: str = "session"
    customers_key: str = "customersSnapshot"
    auth_token_key: str = "authToken"

    # ── Storefront REST API ───────────────────────────────
    api_base_url: str = "http://localhost:8000/api"
    api_timeout_seconds: float = 15.0

    # ── Reconciliation ────────────────────────────────────
    refresh_delay_seconds: float = 0.5
    discard_stale_responses: bool = False

    # ── App ───────────────────────────────────────────────
    app_name: str = "Storefront Sync"
    debug: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
