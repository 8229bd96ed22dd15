"""
Scheduler module for icewatch.

Runs the two ingestion jobs periodically:
- Status page scrape (official reports, every few minutes)
- Weather forecast generation (forecast reports, hourly)
"""

import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import ConfigurationError, Settings
from .database import Database
from .fetcher import StatusPageFetcher, WeatherFetcher
from .forecast import run_forecast
from .models import ForecastResult, ScrapeResult
from .reconciler import run_scrape
from .session import RefreshOutcome

logger = logging.getLogger(__name__)


class IceScheduler:
    """
    Manages periodic ingestion for all lakes.

    Each job runs with max_instances=1 and coalesce=True, so a slow run is
    never overlapped by the next tick of the same job. On-demand triggers
    run in the caller's thread and are not deduplicated against scheduled
    runs; reconciliation keeps storage consistent either way.
    """

    def __init__(
        self,
        database: Database,
        settings: Settings,
        status_fetcher: Optional[StatusPageFetcher] = None,
        weather_fetcher: Optional[WeatherFetcher] = None
    ):
        self.database = database
        self.settings = settings
        self.status_fetcher = status_fetcher or StatusPageFetcher(settings.status_page_url)
        self.weather_fetcher = weather_fetcher or WeatherFetcher(settings.weather_url)
        self.scheduler = BackgroundScheduler()
        self._is_running = False

        self._last_scrape_result: Optional[ScrapeResult] = None
        self._last_forecast_result: Optional[ForecastResult] = None

    def run_scrape(self) -> ScrapeResult:
        """Scrape the status page now. Raises ConfigurationError without credentials."""
        result = run_scrape(self.database, self.settings, fetcher=self.status_fetcher)
        self._last_scrape_result = result
        return result

    def run_forecast(self) -> ForecastResult:
        """Generate forecasts now. Raises ConfigurationError without credentials."""
        result = run_forecast(self.database, self.settings, fetcher=self.weather_fetcher)
        self._last_forecast_result = result
        return result

    def _scheduled_scrape(self) -> None:
        try:
            self.run_scrape()
        except Exception as e:
            logger.error(f"Scheduled scrape failed: {e}")

    def _scheduled_forecast(self) -> None:
        try:
            self.run_forecast()
        except Exception as e:
            logger.error(f"Scheduled forecast failed: {e}")

    def trigger_refresh(self) -> RefreshOutcome:
        """Refresh trigger for in-process sessions: scrape and report success."""
        try:
            result = self.run_scrape()
        except ConfigurationError as e:
            return RefreshOutcome(success=False, message=str(e))
        except Exception as e:
            logger.error(f"Refresh failed: {e}")
            return RefreshOutcome(success=False, message=str(e))
        return RefreshOutcome(
            success=result.success,
            message=result.message or "Data refreshed successfully"
        )

    def start(self) -> None:
        """Start the scheduler."""
        if self._is_running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.add_job(
            self._scheduled_scrape,
            trigger=IntervalTrigger(minutes=self.settings.scrape_interval_minutes),
            id='scrape_job',
            name='Lake status page scrape',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.scheduler.add_job(
            self._scheduled_forecast,
            trigger=IntervalTrigger(minutes=self.settings.forecast_interval_minutes),
            id='forecast_job',
            name='Weather forecast generation',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(f"Scheduler started: scrape every {self.settings.scrape_interval_minutes}min, "
                    f"forecast every {self.settings.forecast_interval_minutes}min")

    def stop(self) -> None:
        """Stop the scheduler and release HTTP sessions."""
        if self._is_running:
            self.scheduler.shutdown(wait=True)
            self._is_running = False
            logger.info("Scheduler stopped")
        self.status_fetcher.close()
        self.weather_fetcher.close()

    def get_last_results(self) -> Dict[str, Any]:
        return {
            "scrape": self._last_scrape_result.to_dict() if self._last_scrape_result else None,
            "forecast": self._last_forecast_result.to_dict() if self._last_forecast_result else None,
        }

    def get_scheduler_status(self) -> dict:
        """Get scheduler status information."""
        scrape_job = self.scheduler.get_job('scrape_job')
        forecast_job = self.scheduler.get_job('forecast_job')

        return {
            "is_running": self._is_running,
            "scrape_interval_minutes": self.settings.scrape_interval_minutes,
            "forecast_interval_minutes": self.settings.forecast_interval_minutes,
            "next_scrape_run": scrape_job.next_run_time.isoformat() if scrape_job and scrape_job.next_run_time else None,
            "next_forecast_run": forecast_job.next_run_time.isoformat() if forecast_job and forecast_job.next_run_time else None,
            "last_results": self.get_last_results(),
        }

    @property
    def is_running(self) -> bool:
        return self._is_running
