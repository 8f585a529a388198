"""
Core configuration: env-driven, one place for every tunable.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings loaded from environment variables."""

    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "callboard")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Chicago")

    MAX_RECURRENCE_ITERATIONS: int = int(os.getenv("MAX_RECURRENCE_ITERATIONS", "10000"))
    MAX_CONCURRENT_FETCHES: int = int(os.getenv("MAX_CONCURRENT_FETCHES", "24"))
    SOURCE_TIMEOUT_SECONDS: float = float(os.getenv("SOURCE_TIMEOUT_SECONDS", "10.0"))

    DEFAULT_EVENT_MINUTES: int = int(os.getenv("DEFAULT_EVENT_MINUTES", "60"))
    DEFAULT_CALLBACK_MINUTES: int = int(os.getenv("DEFAULT_CALLBACK_MINUTES", "30"))

    SEED_DEMO_DATA: bool = os.getenv("SEED_DEMO_DATA", "false").lower() == "true"


settings = Settings()
