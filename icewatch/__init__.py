"""
icewatch

Skate-safety status for Stockholm-area lakes:
- Status page scraping with keyword classification
- One live official report per lake, reconciled atomically
- Weather-based forecast reports with a 6 hour validity
- Freshness tiers for reports and staleness of the aggregate view
- Reader sessions with one-shot background refresh and live updates
"""

from .database import Database, StorageError
from .events import ChangeEvent, EventBus
from .fetcher import FetchError, StatusPageFetcher, WeatherFetcher
from .classifier import StatusPageParser, classify_status, parse_ice_reports
from .lakes import LAKE_ALIASES, LakeResolver, resolve_lake
from .freshness import Freshness, get_freshness, is_data_stale
from .session import LakeSession, RefreshOutcome
from .config import ConfigurationError, Settings

__version__ = "1.0.0"

__all__ = [
    "Database",
    "StorageError",
    "ChangeEvent",
    "EventBus",
    "FetchError",
    "StatusPageFetcher",
    "WeatherFetcher",
    "StatusPageParser",
    "classify_status",
    "parse_ice_reports",
    "LAKE_ALIASES",
    "LakeResolver",
    "resolve_lake",
    "Freshness",
    "get_freshness",
    "is_data_stale",
    "LakeSession",
    "RefreshOutcome",
    "ConfigurationError",
    "Settings",
]
