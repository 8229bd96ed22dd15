"""
HTTP client for the icewatch API.

IceApiClient is an aggregate source and refresh trigger for LakeSession,
so a remote consumer can run the same stale-while-revalidate logic as an
in-process one.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from .fetcher import FetchError, HTTPFetcher
from .models import IceStatus, LakeStatus, ReportSource, SurfaceCondition, parse_timestamp
from .session import RefreshOutcome

logger = logging.getLogger(__name__)

REFRESH_TIMEOUT = 120  # seconds; a scrape waits on the authority's page


def _enum_or_none(enum_cls, value):
    return enum_cls(value) if value is not None else None


def lake_status_from_dict(data: Dict[str, Any]) -> LakeStatus:
    return LakeStatus(
        id=data["id"],
        name=data["name"],
        slug=data["slug"],
        region=data.get("region"),
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        status=_enum_or_none(IceStatus, data.get("status")),
        status_source=_enum_or_none(ReportSource, data.get("status_source")),
        ice_thickness_cm=data.get("ice_thickness_cm"),
        surface_condition=_enum_or_none(SurfaceCondition, data.get("surface_condition")),
        last_updated=parse_timestamp(data.get("last_updated")),
        recent_report_count=data.get("recent_report_count", 0),
    )


class IceApiClient(HTTPFetcher):
    """Reads the aggregate view and triggers refreshes over HTTP."""

    accept = "application/json"

    def __init__(self, base_url: str, service_key: Optional[str] = None, timeout: int = 15):
        super().__init__(timeout)
        self.base_url = base_url.rstrip("/")
        if service_key:
            self._session.headers["Authorization"] = f"Bearer {service_key}"

    def _get_json(self, path: str) -> Any:
        response, _ = self._get(f"{self.base_url}{path}")
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {path}: {e}")

    def get_lakes_with_status(self) -> List[LakeStatus]:
        return [lake_status_from_dict(row) for row in self._get_json("/lakes")]

    def get_lake_status(self, lake_id: int) -> Optional[LakeStatus]:
        for lake in self.get_lakes_with_status():
            if lake.id == lake_id:
                return lake
        return None

    def get_last_refresh_time(self):
        return parse_timestamp(self._get_json("/status").get("last_refresh"))

    def refresh(self) -> RefreshOutcome:
        """Invoke the scrape job; never raises."""
        try:
            response = self._session.post(f"{self.base_url}/refresh", timeout=REFRESH_TIMEOUT)
            payload = response.json() if response.content else {}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Refresh error: {e}")
            return RefreshOutcome(success=False, message=str(e))

        if not response.ok or not payload.get("success"):
            message = payload.get("error") or payload.get("message") or payload.get("detail") \
                or f"Failed to refresh data (HTTP {response.status_code})"
            return RefreshOutcome(success=False, message=str(message))

        return RefreshOutcome(
            success=True,
            message=payload.get("message") or "Data refreshed successfully"
        )
