"""
Runtime configuration for icewatch, read from environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .database import DEFAULT_DB_PATH
from .fetcher import OPEN_METEO_URL, STATUS_PAGE_URL

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Polling intervals
SCRAPE_INTERVAL_MINUTES = 3     # Status page is edited by hand, check often
FORECAST_INTERVAL_MINUTES = 60  # Forecast reports stay valid for 6 hours


class ConfigurationError(Exception):
    """Mandatory configuration is missing; jobs refuse to start."""
    pass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    db_path: str = str(DEFAULT_DB_PATH)
    status_page_url: str = STATUS_PAGE_URL
    weather_url: str = OPEN_METEO_URL
    service_key: Optional[str] = None
    scrape_interval_minutes: int = SCRAPE_INTERVAL_MINUTES
    forecast_interval_minutes: int = FORECAST_INTERVAL_MINUTES
    run_on_startup: bool = True
    scheduler_enabled: bool = True
    seed_lakes: bool = True
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("ICEWATCH_DB_PATH", str(DEFAULT_DB_PATH)),
            status_page_url=os.getenv("ICEWATCH_SOURCE_URL", STATUS_PAGE_URL),
            weather_url=os.getenv("ICEWATCH_WEATHER_URL", OPEN_METEO_URL),
            service_key=os.getenv("ICEWATCH_SERVICE_KEY") or None,
            scrape_interval_minutes=int(os.getenv("ICEWATCH_SCRAPE_INTERVAL_MINUTES", SCRAPE_INTERVAL_MINUTES)),
            forecast_interval_minutes=int(os.getenv("ICEWATCH_FORECAST_INTERVAL_MINUTES", FORECAST_INTERVAL_MINUTES)),
            run_on_startup=_env_bool("ICEWATCH_RUN_ON_STARTUP", True),
            scheduler_enabled=_env_bool("ICEWATCH_SCHEDULER_ENABLED", True),
            seed_lakes=_env_bool("ICEWATCH_SEED_LAKES", True),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cors_origins=os.getenv("CORS_ORIGINS", "*").split(","),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=_env_bool("DEBUG", False),
        )

    def require_credentials(self) -> str:
        """Return the service key or abort the job before it touches any lake."""
        if not self.service_key:
            raise ConfigurationError("Missing service credentials (ICEWATCH_SERVICE_KEY)")
        return self.service_key


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
