"""Centxo — Central Configuration via Pydantic Settings."""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v22.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_app_secret: Optional[str] = None
    meta_timeout_seconds: float = 30.0
    meta_max_pages: int = 50

    # ── Provisioning ──
    create_max_attempts: int = 2
    create_retry_delay: float = 2.5  # seconds, fixed
    pacing_min_ms: int = 150
    pacing_max_ms: int = 300

    # ── Read paths ──
    listing_batch_size: int = 5
    listing_batch_pause: float = 0.2  # seconds between account batches
    listing_fresh_ttl: int = 300
    listing_stale_ttl: int = 3600
    token_cache_ttl: int = 3600

    # ── Storage ──
    database_url: str = ""
    redis_url: Optional[str] = None
    encryption_key: str = "default-key-change-in-production"
    uploads_dir: str = "./uploads"

    # ── AI Providers ──
    anthropic_api_key: Optional[str] = None
    sarvam_api_key: Optional[str] = None
    default_ai_provider: str = "claude"  # claude | sarvam

    # ── App ──
    app_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    cache_sweep_minutes: int = 10

    @property
    def meta_graph_url(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/centxo.db"
        return "sqlite:///./centxo.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
