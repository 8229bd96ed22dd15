"""
Domain types for the icewatch service.

Lakes are reference data; ice reports and user reports are timestamped
observations about a lake; LakeStatus is the derived per-lake aggregate
that readers consume.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

USER_REPORT_LIFETIME = timedelta(hours=24)


class IceStatus(Enum):
    """Skate-safety status of a lake."""
    SAFE = "safe"
    UNCERTAIN = "uncertain"
    WARNING = "warning"
    NO_ICE = "no_ice"


class ReportSource(Enum):
    """Where an ice report came from."""
    OFFICIAL = "official"    # Authority status page, one live row per lake
    FORECAST = "forecast"    # Weather heuristics, time-bounded
    SATELLITE = "satellite"


class SurfaceCondition(Enum):
    PLOWED = "plowed"
    SNOW_COVERED = "snow_covered"
    ROUGH = "rough"
    SMOOTH = "smooth"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as fixed-width UTC text (sorts chronologically)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass
class Lake:
    """A named water body. Created by import, never edited."""
    id: int
    name: str
    slug: str
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_km2: Optional[float] = None
    typical_freeze_date: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None

    @property
    def has_centroid(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class NewLake:
    """Lake record as provided by an administrative import (no id yet)."""
    name: str
    slug: str
    region: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_km2: Optional[float] = None
    typical_freeze_date: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None


@dataclass
class IceReport:
    """A timestamped ice observation for one lake."""
    lake_id: int
    status: IceStatus
    source: ReportSource
    scraped_at: datetime
    valid_from: datetime
    valid_until: Optional[datetime] = None
    ice_thickness_cm: Optional[int] = None
    surface_condition: Optional[SurfaceCondition] = None
    raw_text: Optional[str] = None
    temperature_avg: Optional[float] = None
    wind_speed_avg: Optional[float] = None
    id: Optional[int] = None


@dataclass
class UserReport:
    """A crowd-submitted observation; expires 24 hours after it was made."""
    lake_id: int
    reported_at: datetime
    expires_at: datetime
    user_id: Optional[str] = None
    status: Optional[IceStatus] = None
    surface_condition: Optional[SurfaceCondition] = None
    comment: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    upvotes: int = 0
    id: Optional[int] = None

    @classmethod
    def submit(
        cls,
        lake_id: int,
        reported_at: Optional[datetime] = None,
        **fields: Any
    ) -> "UserReport":
        """Build a new report with its expiry pinned to reported_at + 24h."""
        reported_at = reported_at or utcnow()
        return cls(
            lake_id=lake_id,
            reported_at=reported_at,
            expires_at=reported_at + USER_REPORT_LIFETIME,
            **fields
        )


@dataclass
class LakeStatus:
    """Aggregate row: a lake joined with its current status."""
    id: int
    name: str
    slug: str
    region: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    status: Optional[IceStatus]
    status_source: Optional[ReportSource]
    ice_thickness_cm: Optional[int]
    surface_condition: Optional[SurfaceCondition]
    last_updated: Optional[datetime]
    recent_report_count: int = 0


@dataclass
class ParsedReport:
    """Result of classifying one lake's segment of the status page."""
    lake_name: str
    status: IceStatus
    raw_text: str
    surface_condition: Optional[SurfaceCondition] = None
    ice_thickness_cm: Optional[int] = None
    last_updated: Optional[str] = None


@dataclass
class ScrapeResult:
    """Summary of one status-page ingestion run."""
    success: bool = True
    processed: int = 0
    updated: int = 0
    matched: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processed": self.processed,
            "updated": self.updated,
            "matched": list(self.matched),
            "notFound": list(self.not_found),
            "errors": list(self.errors),
            "durationMs": self.duration_ms,
        }


@dataclass
class LakeForecast:
    """Weather summary behind one forecast report."""
    lake_id: int
    lake_name: str
    temperature_avg: float
    wind_speed_avg: float
    freezing_hours: int
    forecast_quality: str
    status: IceStatus


@dataclass
class ForecastResult:
    """Summary of one forecast generation run."""
    success: bool = True
    forecasts: List[LakeForecast] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def forecasts_generated(self) -> int:
        return len(self.forecasts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "forecastsGenerated": self.forecasts_generated,
            "durationMs": self.duration_ms,
        }
