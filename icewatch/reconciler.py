"""
Status-page ingestion: fetch, parse, resolve and reconcile official reports.

Every lake is reconciled on its own: a failure for one lake is recorded in
the run summary and the remaining lakes are still processed. The job
returns a ScrapeResult instead of raising; only missing credentials abort it.
"""

import logging
import time
from datetime import datetime
from typing import Iterable, Optional

from .classifier import StatusPageParser
from .config import Settings
from .database import Database
from .fetcher import FetchError, StatusPageFetcher
from .lakes import LakeResolver
from .models import IceReport, ParsedReport, ReportSource, ScrapeResult, utcnow

logger = logging.getLogger(__name__)

STATUS_SOURCE_NAME = "Stockholm lake ice status page"


def reconcile_reports(
    database: Database,
    reports: Iterable[ParsedReport],
    resolver: LakeResolver,
    now: Optional[datetime] = None,
    result: Optional[ScrapeResult] = None
) -> ScrapeResult:
    """Replace each resolved lake's official report with the parsed one."""
    result = result or ScrapeResult()
    now = now or utcnow()

    for report in reports:
        result.processed += 1

        lake = resolver.resolve(report.lake_name)
        if lake is None:
            result.not_found.append(report.lake_name)
            continue

        try:
            database.replace_official_report(IceReport(
                lake_id=lake.id,
                status=report.status,
                source=ReportSource.OFFICIAL,
                ice_thickness_cm=report.ice_thickness_cm,
                surface_condition=report.surface_condition,
                raw_text=f"{lake.name}: {report.raw_text}",
                scraped_at=now,
                valid_from=now,
            ))
        except Exception as e:
            result.errors.append(f"{report.lake_name}: {e}")
            logger.error(f"Insert error for {report.lake_name}: {e}")
            continue

        result.updated += 1
        result.matched.append(f"{lake.name} ({report.status.value})")
        logger.info(f"Updated {lake.name}: {report.status.value}")

    return result


def _record_source_status(database: Database, fetcher: StatusPageFetcher, **kwargs) -> None:
    try:
        database.update_source_status(source_url=fetcher.url, source_name=STATUS_SOURCE_NAME, **kwargs)
    except Exception as e:
        logger.error(f"Could not record status page health: {e}")


def _fail(result: ScrapeResult, message: str) -> ScrapeResult:
    result.success = False
    result.message = message
    result.errors.append(message)
    return result


def run_scrape(
    database: Database,
    settings: Settings,
    fetcher: Optional[StatusPageFetcher] = None,
    now: Optional[datetime] = None
) -> ScrapeResult:
    """
    Run one ingestion of the status page.

    Fetch, parse and storage failures are reported in the returned result.

    Raises:
        ConfigurationError: service credentials are not configured
    """
    settings.require_credentials()

    start_time = time.time()
    own_fetcher = fetcher is None
    fetcher = fetcher or StatusPageFetcher(settings.status_page_url)
    result = ScrapeResult()

    try:
        try:
            page, response_time = fetcher.fetch_page()
        except FetchError as e:
            logger.error(f"Status page fetch failed: {e}")
            _record_source_status(database, fetcher, success=False, error_message=str(e))
            return _fail(result, str(e))

        try:
            parsed = StatusPageParser().parse(page)
            logger.info(f"Parsed {len(parsed)} ice reports")

            lakes = database.get_lakes()
            logger.info(f"Found {len(lakes)} lakes in database")

            reconcile_reports(database, parsed, LakeResolver(lakes), now=now, result=result)

            database.update_source_status(
                source_url=fetcher.url,
                source_name=STATUS_SOURCE_NAME,
                success=True,
                entries_count=len(parsed),
                response_time_ms=response_time,
            )
        except Exception as e:
            logger.error(f"Scrape failed: {e}")
            _record_source_status(database, fetcher, success=False, error_message=str(e))
            return _fail(result, str(e))

        result.message = f"Scraped {result.processed} reports, updated {result.updated}"
        return result

    finally:
        result.duration_ms = int((time.time() - start_time) * 1000)
        if own_fetcher:
            fetcher.close()
        logger.info(
            f"Scrape summary: processed={result.processed} updated={result.updated} "
            f"not_found={', '.join(result.not_found) or 'none'} errors={len(result.errors)}"
        )
