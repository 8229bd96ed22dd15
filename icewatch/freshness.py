"""
Freshness of individual reports and staleness of the aggregate view.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .models import UserReport, utcnow

AGING_AFTER = timedelta(hours=12)
STALE_AFTER = timedelta(hours=18)

# Aggregate data older than this triggers a background refresh
STALE_THRESHOLD = timedelta(minutes=30)


class Freshness(Enum):
    """Decay tiers, ordered from newest to oldest."""
    FRESH = "fresh"      # < 12 hours old
    AGING = "aging"      # 12-18 hours old
    STALE = "stale"      # 18-24 hours old
    EXPIRED = "expired"  # past expires_at, whatever its age


def get_freshness(now: datetime, reported_at: datetime, expires_at: Optional[datetime]) -> Freshness:
    if expires_at is not None and now > expires_at:
        return Freshness.EXPIRED
    age = now - reported_at
    if age > STALE_AFTER:
        return Freshness.STALE
    if age > AGING_AFTER:
        return Freshness.AGING
    return Freshness.FRESH


def get_report_freshness(report: UserReport, now: Optional[datetime] = None) -> Freshness:
    return get_freshness(now or utcnow(), report.reported_at, report.expires_at)


def is_report_expired(report: UserReport, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) > report.expires_at


def is_data_stale(last_refresh: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when nothing was ever fetched or the newest report is over 30 minutes old."""
    if last_refresh is None:
        return True
    return (now or utcnow()) - last_refresh > STALE_THRESHOLD
