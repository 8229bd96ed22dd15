"""Tests for weather-based forecast reports."""

from datetime import timedelta

import pytest

from icewatch.config import ConfigurationError
from icewatch.forecast import (
    FORECAST_VALIDITY,
    QUALITY_GOOD,
    QUALITY_MODERATE,
    QUALITY_POOR,
    WEATHER_SOURCE_NAME,
    calculate_ice_quality,
    generate_forecasts,
    predict_status,
    run_forecast,
)
from icewatch.models import IceStatus, Lake, ReportSource

from conftest import NOW, FakeWeatherFetcher


class TestIceQuality:

    def test_good(self):
        assert calculate_ice_quality([-8.0] * 100, [3.0] * 100) == QUALITY_GOOD

    def test_good_needs_calm_wind(self):
        assert calculate_ice_quality([-8.0] * 100, [6.0] * 100) == QUALITY_MODERATE

    def test_moderate(self):
        temperatures = [-3.0] * 60 + [1.0] * 40
        assert calculate_ice_quality(temperatures, [8.0] * 100) == QUALITY_MODERATE

    def test_poor_when_mostly_thawing(self):
        temperatures = [-6.0] * 40 + [1.0] * 60
        assert calculate_ice_quality(temperatures, [2.0] * 100) == QUALITY_POOR

    def test_poor_when_windy(self):
        assert calculate_ice_quality([-3.0] * 100, [12.0] * 100) == QUALITY_POOR

    def test_empty_series(self):
        with pytest.raises(ValueError):
            calculate_ice_quality([], [])


class TestPredictStatus:

    def test_safe(self):
        assert predict_status(QUALITY_GOOD, 150, -8.0) == IceStatus.SAFE

    def test_good_but_short_series(self):
        assert predict_status(QUALITY_GOOD, 100, -8.0) == IceStatus.UNCERTAIN

    def test_poor(self):
        assert predict_status(QUALITY_POOR, 10, -1.0) == IceStatus.WARNING

    def test_warm(self):
        assert predict_status(QUALITY_MODERATE, 80, 2.5) == IceStatus.WARNING

    def test_moderate(self):
        assert predict_status(QUALITY_MODERATE, 80, -2.0) == IceStatus.UNCERTAIN


class TestGenerateForecasts:

    def test_one_report_per_lake(self, db, weather_fetcher):
        sleeps = []
        result = generate_forecasts(db, weather_fetcher, sleep=sleeps.append, now=NOW)

        lakes = db.get_lakes()
        assert result.forecasts_generated == len(lakes)
        assert len(sleeps) == len(lakes)
        assert all(f.status == IceStatus.SAFE for f in result.forecasts)

        report = db.get_lake_reports(lakes[0].id)[0]
        assert report.source == ReportSource.FORECAST
        assert report.valid_from == NOW
        assert report.valid_until == NOW + FORECAST_VALIDITY
        assert report.valid_until - report.valid_from == timedelta(hours=6)
        assert report.temperature_avg == -8.0
        assert "168 freezing hours" in report.raw_text

    def test_failed_lake_skipped(self, db):
        lakes = db.get_lakes()
        failing = lakes[1]
        fetcher = FakeWeatherFetcher(failing={(failing.latitude, failing.longitude)})

        result = generate_forecasts(db, fetcher, sleep=lambda s: None, now=NOW)

        assert result.forecasts_generated == len(lakes) - 1
        assert failing.id not in {f.lake_id for f in result.forecasts}
        assert db.count_reports(failing.id, ReportSource.FORECAST) == 0
        assert len(fetcher.calls) == len(lakes)

    def test_lake_without_centroid_skipped(self, weather_fetcher, db):
        lakes = [
            Lake(id=db.get_lakes()[0].id, name="Drevviken", slug="drevviken", latitude=59.2, longitude=18.1),
            Lake(id=999, name="Okänd", slug="okand"),
        ]
        result = generate_forecasts(db, weather_fetcher, lakes=lakes, sleep=lambda s: None, now=NOW)

        assert result.forecasts_generated == 1
        assert weather_fetcher.calls == [(59.2, 18.1)]

    def test_forecast_expires_from_aggregate(self, db, weather_fetcher):
        generate_forecasts(db, weather_fetcher, sleep=lambda s: None, now=NOW)
        lake_id = db.get_lakes()[0].id

        assert db.get_lake_status(lake_id, now=NOW + timedelta(hours=5)).status == IceStatus.SAFE
        assert db.get_lake_status(lake_id, now=NOW + timedelta(hours=7)).status is None

    def test_warm_week(self, db):
        fetcher = FakeWeatherFetcher(temperature=4.0, wind=3.0)
        result = generate_forecasts(db, fetcher, sleep=lambda s: None, now=NOW)
        assert all(f.forecast_quality == QUALITY_POOR for f in result.forecasts)
        assert all(f.status == IceStatus.WARNING for f in result.forecasts)


class TestRunForecast:

    def test_records_source_status(self, db, settings, weather_fetcher):
        result = run_forecast(db, settings, fetcher=weather_fetcher, now=NOW)

        assert result.success
        source = db.get_source_status()[0]
        assert source["source_name"] == WEATHER_SOURCE_NAME
        assert source["status"] == "ok"
        assert source["entries_count"] == result.forecasts_generated

    def test_missing_credentials(self, db, settings, weather_fetcher):
        settings.service_key = None
        with pytest.raises(ConfigurationError):
            run_forecast(db, settings, fetcher=weather_fetcher, now=NOW)
        assert weather_fetcher.calls == []
