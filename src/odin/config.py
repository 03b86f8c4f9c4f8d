"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Application configuration. All values sourced from environment variables."""

    # Required
    database_path: str

    # Optional: Sync
    sync_interval_minutes: int = 360
    sync_on_startup: bool = True
    natural_earth_path: str = "./assets/geojson/ne_countries.geojson"
    http_timeout_seconds: float = 30.0

    # Optional: Credentials (override values stored in settings)
    acled_email: str = ""
    acled_password: str = ""

    # Optional: Web
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # Optional: Application
    log_level: str = "INFO"
    log_format: str = "json"
    app_env: str = "production"


_REQUIRED_VARS = [
    "DATABASE_PATH",
]

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def load_config(env_path: str | Path | None = None) -> Config:
    """Load configuration from environment variables.

    Loads a .env file if present (for local development), then validates
    that all required variables are set. Raises ValueError listing any
    missing variables.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [var for var in _REQUIRED_VARS if not os.environ.get(var)]
    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    return Config(
        # Required
        database_path=os.environ["DATABASE_PATH"],
        # Optional: Sync
        sync_interval_minutes=int(os.environ.get("SYNC_INTERVAL_MINUTES", "360")),
        sync_on_startup=_env_bool("SYNC_ON_STARTUP", True),
        natural_earth_path=os.environ.get(
            "NATURAL_EARTH_PATH", "./assets/geojson/ne_countries.geojson"
        ),
        http_timeout_seconds=float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30")),
        # Optional: Credentials
        acled_email=os.environ.get("ACLED_EMAIL", ""),
        acled_password=os.environ.get("ACLED_PASSWORD", ""),
        # Optional: Web
        web_host=os.environ.get("WEB_HOST", "0.0.0.0"),
        web_port=int(os.environ.get("WEB_PORT", "8080")),
        # Optional: Application
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=os.environ.get("LOG_FORMAT", "json"),
        app_env=os.environ.get("APP_ENV", "production"),
    )
