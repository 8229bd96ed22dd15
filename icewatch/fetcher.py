"""
HTTP fetchers for icewatch's external sources.

- Status page: the authority's Google Sites page, free text (no schema)
- Weather: Open-Meteo hourly forecast per coordinate (no API key)

Both share a requests session with a retry strategy for transient failures
and raise FetchError for anything that prevents getting a usable payload.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
RETRY_BACKOFF = 0.5
USER_AGENT = "icewatch/1.0 (Stockholm lake ice status)"

STATUS_PAGE_URL = "https://sites.google.com/view/isarna"
OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
FORECAST_DAYS = 7
FORECAST_TIMEZONE = "Europe/Stockholm"


class FetchError(Exception):
    """Raised when a source cannot be fetched or returns unusable data."""
    pass


@dataclass
class WeatherSeries:
    """Hourly weather for one coordinate."""
    latitude: float
    longitude: float
    times: List[str]
    temperatures: List[float]
    wind_speeds: List[float]


def _elapsed_ms(start: datetime) -> int:
    return int((datetime.now(timezone.utc) - start).total_seconds() * 1000)


class HTTPFetcher:
    """Base fetcher: pooled session, retries, timing and error mapping."""

    accept = "*/*"

    def __init__(self, timeout: int = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with retry strategy for availability."""
        session = requests.Session()

        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": self.accept,
        })

        return session

    def _get(self, url: str, **kwargs: Any) -> Tuple[requests.Response, int]:
        """GET with timing; maps requests exceptions to FetchError."""
        start_time = datetime.now(timezone.utc)

        try:
            response = self._session.get(url, timeout=self.timeout, allow_redirects=True, **kwargs)
            response.raise_for_status()
            return response, _elapsed_ms(start_time)

        except requests.Timeout:
            raise FetchError(f"Request timed out after {self.timeout}s")
        except requests.ConnectionError as e:
            raise FetchError(f"Connection error - source unavailable: {e}")
        except requests.HTTPError as e:
            raise FetchError(f"HTTP error {e.response.status_code}")
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {e}")

    def close(self) -> None:
        """Close HTTP session."""
        self._session.close()


class StatusPageFetcher(HTTPFetcher):
    """Fetches the authority's lake status page as text."""

    accept = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

    def __init__(self, url: str = STATUS_PAGE_URL, timeout: int = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.url = url
        self._session.headers["Accept-Language"] = "sv-SE,sv;q=0.9,en;q=0.8"

    def fetch_page(self) -> Tuple[str, int]:
        """Return (page text, response time in ms)."""
        logger.info(f"Fetching {self.url}...")
        response, response_time = self._get(self.url)
        page = response.text
        if not page.strip():
            raise FetchError("Status page was empty")
        logger.info(f"Fetched status page: {len(page)} bytes in {response_time}ms")
        return page, response_time


class WeatherFetcher(HTTPFetcher):
    """Fetches hourly temperature and wind speed from Open-Meteo."""

    accept = "application/json"

    def __init__(self, url: str = OPEN_METEO_URL, timeout: int = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.url = url

    def fetch_hourly(self, latitude: float, longitude: float) -> WeatherSeries:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "hourly": "temperature_2m,windspeed_10m",
            "forecast_days": FORECAST_DAYS,
            "timezone": FORECAST_TIMEZONE,
        }
        response, _ = self._get(self.url, params=params)

        try:
            payload: Dict[str, Any] = response.json()
            hourly = payload["hourly"]
            temperatures = [float(t) for t in hourly["temperature_2m"] if t is not None]
            wind_speeds = [float(w) for w in hourly["windspeed_10m"] if w is not None]
        except (ValueError, KeyError, TypeError) as e:
            raise FetchError(f"Malformed weather response: {e}")

        if not temperatures or not wind_speeds:
            raise FetchError("Weather response contained no hourly values")

        return WeatherSeries(
            latitude=latitude,
            longitude=longitude,
            times=list(hourly.get("time", [])),
            temperatures=temperatures,
            wind_speeds=wind_speeds,
        )
