"""Weighted Quorum — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class QuorumSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "QUORUM_",
        "extra": "ignore",
    }

    # ── Intent Store ───────────────────────────────────────────
    database_url: str = "sqlite:///weighted_quorum.db"

    # ── Group Config ───────────────────────────────────────────
    config_path: str = "quorum.json"

    # ── Host ───────────────────────────────────────────────────
    # Warn once this many intents hold a lock slot at the same time
    lock_registry_size_warning: int = 10_000

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = QuorumSettings()
