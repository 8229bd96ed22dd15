"""Shared pytest fixtures for icewatch tests.

All tests run offline: HTTP fetchers are replaced by small fakes that
return canned pages and weather series.
"""

from datetime import datetime, timezone

import pytest

from icewatch.config import Settings
from icewatch.database import Database
from icewatch.events import EventBus
from icewatch.fetcher import FetchError, WeatherSeries
from icewatch.lakes import SEED_LAKES

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

STATUS_PAGE = """
<html>
<head><script>var lakes = ["Flaten", "Bornsjön"];</script></head>
<body>
<h2>SÖDERORT</h2>
<div>
  <h3>Drevvikens sjöisbana</h3>
  <p>Aktuella upplysningar: Isen är plogad och preparerad, 15 cm.</p>
  <p>Banans längd: 5 km</p>
  <p>Informationen uppdaterad: 5 januari 2026, klockan 15:00</p>
</div>
<div>
  <h3>Långsjöns sjöisbana</h3>
  <p>Aktuella upplysningar: Banan är stängd för säsongen.</p>
</div>
<div>
  <h3>Magelungens sjöisbana</h3>
  <p>Aktuella upplysningar: Varning för tunn is vid bryggan. Undvik området.</p>
</div>
<div>
  <h3>Trekanten</h3>
  <p>Aktuella upplysningar: Isen är plogad men risk för svaga partier nära utloppet.</p>
</div>
<h2>VÄSTERORT</h2>
<div>
  <h3>Judarn</h3>
  <p>Ingen information ännu.</p>
</div>
<p>Isen är inte tillräckligt tjock för våra maskiner på övriga sjöar.</p>
</body>
</html>
"""


class FakeStatusFetcher:
    """Stands in for StatusPageFetcher."""

    url = "https://example.test/isarna"

    def __init__(self, page=STATUS_PAGE, error=None):
        self.page = page
        self.error = error
        self.calls = 0
        self.closed = False

    def fetch_page(self):
        self.calls += 1
        if self.error:
            raise FetchError(self.error)
        return self.page, 12

    def close(self):
        self.closed = True


class FakeWeatherFetcher:
    """Stands in for WeatherFetcher; same series for every coordinate."""

    url = "https://example.test/forecast"

    def __init__(self, temperature=-8.0, wind=2.0, hours=168, failing=()):
        self.temperature = temperature
        self.wind = wind
        self.hours = hours
        self.failing = set(failing)
        self.calls = []

    def fetch_hourly(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if (latitude, longitude) in self.failing:
            raise FetchError("Open-Meteo API error: 503")
        return WeatherSeries(
            latitude=latitude,
            longitude=longitude,
            times=[f"t{i}" for i in range(self.hours)],
            temperatures=[self.temperature] * self.hours,
            wind_speeds=[self.wind] * self.hours,
        )

    def close(self):
        pass


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def db(tmp_path, events):
    """Database with the reference lakes imported."""
    database = Database(str(tmp_path / "test.db"), events=events)
    database.insert_lakes(SEED_LAKES)
    yield database
    database.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "api.db"),
        service_key="test-key",
        run_on_startup=False,
        scheduler_enabled=False,
    )


@pytest.fixture
def status_fetcher():
    return FakeStatusFetcher()


@pytest.fixture
def weather_fetcher():
    return FakeWeatherFetcher()


@pytest.fixture
def lakes_by_name(db):
    return {lake.name: lake for lake in db.get_lakes()}
