"""
Forecast reports derived from a week of hourly weather per lake.

The heuristic looks at mean temperature, mean wind and how many hours are
below freezing; the resulting report is valid for six hours.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from .config import Settings
from .database import Database
from .fetcher import WeatherFetcher
from .models import (
    ForecastResult,
    IceReport,
    IceStatus,
    Lake,
    LakeForecast,
    ReportSource,
    utcnow,
)

logger = logging.getLogger(__name__)

FORECAST_VALIDITY = timedelta(hours=6)
REQUEST_DELAY_SECONDS = 0.1
SAFE_FREEZING_HOURS = 100

QUALITY_GOOD = "good"
QUALITY_MODERATE = "moderate"
QUALITY_POOR = "poor"

WEATHER_SOURCE_NAME = "Open-Meteo hourly forecast"


def _mean(values: Sequence[float]) -> float:
    if not values:
        raise ValueError("Cannot average an empty series")
    return sum(values) / len(values)


def calculate_ice_quality(temperatures: Sequence[float], wind_speeds: Sequence[float]) -> str:
    """Rate ice formation potential as good, moderate or poor."""
    avg_temp = _mean(temperatures)
    avg_wind = _mean(wind_speeds)
    freezing_hours = sum(1 for t in temperatures if t < 0)

    # Cold, calm, almost always below zero
    if avg_temp < -5 and avg_wind < 5 and freezing_hours > len(temperatures) * 0.8:
        return QUALITY_GOOD

    if avg_temp < 0 and avg_wind < 10 and freezing_hours > len(temperatures) * 0.5:
        return QUALITY_MODERATE

    return QUALITY_POOR


def predict_status(quality: str, freezing_hours: int, avg_temp: float) -> IceStatus:
    if quality == QUALITY_GOOD and freezing_hours > SAFE_FREEZING_HOURS:
        return IceStatus.SAFE
    if quality == QUALITY_POOR or avg_temp > 2:
        return IceStatus.WARNING
    return IceStatus.UNCERTAIN


def summarize_weather(lake: Lake, temperatures: Sequence[float], wind_speeds: Sequence[float]) -> LakeForecast:
    avg_temp = _mean(temperatures)
    avg_wind = _mean(wind_speeds)
    freezing_hours = sum(1 for t in temperatures if t < 0)
    quality = calculate_ice_quality(temperatures, wind_speeds)

    return LakeForecast(
        lake_id=lake.id,
        lake_name=lake.name,
        temperature_avg=round(avg_temp, 1),
        wind_speed_avg=round(avg_wind, 1),
        freezing_hours=freezing_hours,
        forecast_quality=quality,
        status=predict_status(quality, freezing_hours, avg_temp),
    )


def forecast_report(forecast: LakeForecast, now: datetime) -> IceReport:
    return IceReport(
        lake_id=forecast.lake_id,
        status=forecast.status,
        source=ReportSource.FORECAST,
        temperature_avg=forecast.temperature_avg,
        wind_speed_avg=forecast.wind_speed_avg,
        raw_text=(
            f"7-day forecast: {forecast.freezing_hours} freezing hours, "
            f"avg temp {forecast.temperature_avg:.1f}°C, "
            f"avg wind {forecast.wind_speed_avg:.1f} m/s"
        ),
        scraped_at=now,
        valid_from=now,
        valid_until=now + FORECAST_VALIDITY,
    )


def generate_forecasts(
    database: Database,
    fetcher: WeatherFetcher,
    lakes: Optional[List[Lake]] = None,
    delay_seconds: float = REQUEST_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None
) -> ForecastResult:
    """
    Write one forecast report per lake with a centroid.

    Lakes are processed one at a time with a short pause after each
    weather call; a lake that fails is logged and skipped.
    """
    start_time = time.time()
    lakes = database.get_lakes() if lakes is None else lakes
    result = ForecastResult()
    failures = 0

    logger.info(f"Starting forecast generation for {len(lakes)} lakes...")

    for i, lake in enumerate(lakes, 1):
        if not lake.has_centroid:
            logger.info(f"[{i}/{len(lakes)}] Skipping {lake.name}: no centroid")
            continue

        try:
            series = fetcher.fetch_hourly(lake.latitude, lake.longitude)
            forecast = summarize_weather(lake, series.temperatures, series.wind_speeds)
            database.insert_report(forecast_report(forecast, now or utcnow()))
            result.forecasts.append(forecast)
            logger.info(
                f"[{i}/{len(lakes)}] {lake.name}: {forecast.forecast_quality} "
                f"({forecast.freezing_hours} freezing hours) -> {forecast.status.value}"
            )
        except Exception as e:
            failures += 1
            logger.error(f"[{i}/{len(lakes)}] Error fetching forecast for {lake.name}: {e}")
        finally:
            sleep(delay_seconds)

    result.duration_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Forecasts generated: {result.forecasts_generated}, failed: {failures} ({result.duration_ms}ms)")
    return result


def run_forecast(
    database: Database,
    settings: Settings,
    fetcher: Optional[WeatherFetcher] = None,
    now: Optional[datetime] = None
) -> ForecastResult:
    """Scheduled entry point: check credentials, generate, record source health."""
    settings.require_credentials()

    own_fetcher = fetcher is None
    fetcher = fetcher or WeatherFetcher(settings.weather_url)
    try:
        result = generate_forecasts(database, fetcher, now=now)
        attempted = sum(1 for lake in database.get_lakes() if lake.has_centroid)
        all_failed = attempted > 0 and result.forecasts_generated == 0
        database.update_source_status(
            source_url=fetcher.url,
            source_name=WEATHER_SOURCE_NAME,
            success=not all_failed,
            entries_count=result.forecasts_generated,
            error_message="No forecasts could be generated" if all_failed else None,
            response_time_ms=result.duration_ms // max(attempted, 1),
        )
        return result
    finally:
        if own_fetcher:
            fetcher.close()
