"""
REST API module for icewatch.

Provides endpoints for:
- Current status per lake (the aggregate view)
- Report history and community reports per lake
- Refresh triggers for the ingestion jobs
- System status and source health
"""

import logging
import os
from typing import List, Optional
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import ConfigurationError, Settings, configure_logging
from .database import Database
from .events import EventBus
from .fetcher import StatusPageFetcher, WeatherFetcher
from .freshness import STALE_THRESHOLD, get_report_freshness, is_data_stale
from .lakes import SEED_LAKES
from .models import (
    IceReport,
    IceStatus,
    Lake,
    LakeStatus,
    SurfaceCondition,
    UserReport,
    format_timestamp,
    utcnow,
)
from .scheduler import IceScheduler

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# Pydantic Models
# =============================================================================

class LakeStatusModel(BaseModel):
    id: int
    name: str
    slug: str
    region: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    status: Optional[str]
    status_source: Optional[str]
    ice_thickness_cm: Optional[int]
    surface_condition: Optional[str]
    last_updated: Optional[str]
    recent_report_count: int


class IceReportModel(BaseModel):
    id: int
    lake_id: int
    status: str
    source: str
    ice_thickness_cm: Optional[int]
    surface_condition: Optional[str]
    temperature_avg: Optional[float]
    wind_speed_avg: Optional[float]
    raw_text: Optional[str]
    scraped_at: str
    valid_from: str
    valid_until: Optional[str]


class UserReportModel(BaseModel):
    id: int
    lake_id: int
    user_id: Optional[str]
    status: Optional[str]
    surface_condition: Optional[str]
    comment: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    upvotes: int
    reported_at: str
    expires_at: str
    freshness: str


class UserReportCreate(BaseModel):
    user_id: Optional[str] = None
    status: Optional[IceStatus] = None
    surface_condition: Optional[SurfaceCondition] = None
    comment: Optional[str] = Field(default=None, max_length=500)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


class SourceHealth(BaseModel):
    source_url: str
    source_name: Optional[str]
    status: str
    last_fetch_at: Optional[str]
    last_success_at: Optional[str]
    fetch_count: int
    success_count: int
    error_count: int
    reliability_percent: float
    avg_response_time_ms: int
    consecutive_failures: int
    entries_count: int
    last_error: Optional[str]


class SystemStatus(BaseModel):
    status: str
    uptime: str
    scheduler_running: bool
    last_refresh: Optional[str]
    is_stale: bool
    stale_threshold_minutes: int
    lake_count: int
    official_reports: int
    forecast_reports: int
    active_user_reports: int
    source_health: List[SourceHealth]
    risks: List[str]


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: str
    scheduler: str
    risks: List[str]


# =============================================================================
# Serialization
# =============================================================================

def _ts(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value else None


def _val(member) -> Optional[str]:
    return member.value if member is not None else None


def lake_status_to_model(lake: LakeStatus) -> LakeStatusModel:
    return LakeStatusModel(
        id=lake.id,
        name=lake.name,
        slug=lake.slug,
        region=lake.region,
        latitude=lake.latitude,
        longitude=lake.longitude,
        status=_val(lake.status),
        status_source=_val(lake.status_source),
        ice_thickness_cm=lake.ice_thickness_cm,
        surface_condition=_val(lake.surface_condition),
        last_updated=_ts(lake.last_updated),
        recent_report_count=lake.recent_report_count,
    )


def ice_report_to_model(report: IceReport) -> IceReportModel:
    return IceReportModel(
        id=report.id,
        lake_id=report.lake_id,
        status=report.status.value,
        source=report.source.value,
        ice_thickness_cm=report.ice_thickness_cm,
        surface_condition=_val(report.surface_condition),
        temperature_avg=report.temperature_avg,
        wind_speed_avg=report.wind_speed_avg,
        raw_text=report.raw_text,
        scraped_at=_ts(report.scraped_at),
        valid_from=_ts(report.valid_from),
        valid_until=_ts(report.valid_until),
    )


def user_report_to_model(report: UserReport, now: Optional[datetime] = None) -> UserReportModel:
    return UserReportModel(
        id=report.id,
        lake_id=report.lake_id,
        user_id=report.user_id,
        status=_val(report.status),
        surface_condition=_val(report.surface_condition),
        comment=report.comment,
        latitude=report.latitude,
        longitude=report.longitude,
        upvotes=report.upvotes,
        reported_at=_ts(report.reported_at),
        expires_at=_ts(report.expires_at),
        freshness=get_report_freshness(report, now).value,
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    status_fetcher: Optional[StatusPageFetcher] = None,
    weather_fetcher: Optional[WeatherFetcher] = None
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting icewatch...")
        app.state.start_time = utcnow()

        app.state.events = EventBus()
        app.state.db = Database(settings.db_path, events=app.state.events)
        if settings.seed_lakes:
            app.state.db.insert_lakes(SEED_LAKES)

        app.state.scheduler = IceScheduler(
            app.state.db, settings,
            status_fetcher=status_fetcher,
            weather_fetcher=weather_fetcher,
        )

        if settings.run_on_startup:
            try:
                logger.info("Performing initial scrape...")
                app.state.scheduler.run_scrape()
            except Exception as e:
                logger.warning(f"Initial scrape warning: {e}")

        if settings.scheduler_enabled:
            app.state.scheduler.start()

        yield

        logger.info("Shutting down...")
        app.state.scheduler.stop()
        app.state.db.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="icewatch API",
        description="Ice conditions for Stockholm-area lakes",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


# =============================================================================
# Dependencies
# =============================================================================

def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def get_scheduler(request: Request) -> IceScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not available")
    return scheduler


def require_service_key(request: Request, authorization: Optional[str] = Header(default=None)) -> None:
    """Refresh endpoints need "Authorization: Bearer <service key>" when a key is set."""
    expected = request.app.state.settings.service_key
    if expected is None:
        return
    if authorization != f"Bearer {expected}":
        raise HTTPException(status_code=401, detail="Invalid or missing service key")


def _get_lake(db: Database, slug: str) -> Lake:
    lake = db.get_lake_by_slug(slug)
    if lake is None:
        raise HTTPException(status_code=404, detail=f"No lake found: {slug}")
    return lake


def detect_risks(db: Database, scheduler: Optional[IceScheduler] = None) -> List[str]:
    """Detect system risks."""
    risks = []

    if is_data_stale(db.get_last_refresh_time()):
        risks.append("Ice data is stale")

    for source in db.get_source_status():
        if source.get("consecutive_failures", 0) >= 3:
            risks.append(f"Source failing repeatedly: {source.get('source_name', 'unknown')}")
        if source.get("reliability_percent", 100) < 80:
            risks.append(f"Low reliability: {source.get('source_name', 'unknown')}")

    if scheduler is not None and not scheduler.is_running:
        risks.append("Scheduler not running")

    return risks


def get_uptime(start_time: Optional[datetime]) -> str:
    """Get formatted uptime string."""
    if not start_time:
        return "N/A"
    delta = utcnow() - start_time
    hours, remainder = divmod(int(delta.total_seconds()), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h {minutes}m {seconds}s"


def _register_routes(app: FastAPI) -> None:

    # =========================================================================
    # Info
    # =========================================================================

    @app.get("/", tags=["Info"])
    async def root():
        """API information."""
        return {
            "name": "icewatch API",
            "version": API_VERSION,
            "description": "Ice conditions for Stockholm-area lakes",
            "sources": {
                "official": "Municipality lake status page - one live report per lake",
                "forecast": "Open-Meteo hourly weather - 6 hour forecast reports"
            }
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint."""
        db = getattr(request.app.state, "db", None)
        scheduler = getattr(request.app.state, "scheduler", None)
        risks = detect_risks(db, scheduler) if db else ["System not initialized"]

        return HealthResponse(
            status="healthy" if not risks else "degraded",
            timestamp=format_timestamp(utcnow()),
            database="connected" if db else "disconnected",
            scheduler="running" if scheduler and scheduler.is_running else "stopped",
            risks=risks
        )

    # =========================================================================
    # Lakes
    # =========================================================================

    @app.get("/lakes", response_model=List[LakeStatusModel], tags=["Lakes"])
    async def get_lakes(db: Database = Depends(get_db)):
        """Current status of every lake."""
        return [lake_status_to_model(lake) for lake in db.get_lakes_with_status()]

    @app.get("/lakes/{slug}", response_model=LakeStatusModel, tags=["Lakes"])
    async def get_lake(slug: str, db: Database = Depends(get_db)):
        lake = _get_lake(db, slug)
        status = db.get_lake_status(lake.id)
        return lake_status_to_model(status)

    @app.get("/lakes/{slug}/reports", response_model=List[IceReportModel], tags=["Lakes"])
    async def get_lake_reports(
        slug: str,
        limit: int = Query(default=20, ge=1, le=100),
        db: Database = Depends(get_db)
    ):
        """Recent official and forecast reports, newest first."""
        lake = _get_lake(db, slug)
        return [ice_report_to_model(r) for r in db.get_lake_reports(lake.id, limit)]

    # =========================================================================
    # Community Reports
    # =========================================================================

    @app.get("/lakes/{slug}/user-reports", response_model=List[UserReportModel], tags=["Community"])
    async def get_user_reports(
        slug: str,
        include_expired: bool = Query(default=True),
        db: Database = Depends(get_db)
    ):
        lake = _get_lake(db, slug)
        now = utcnow()
        reports = db.get_user_reports(lake.id, include_expired=include_expired, now=now)
        return [user_report_to_model(r, now) for r in reports]

    @app.post("/lakes/{slug}/user-reports", response_model=UserReportModel, status_code=201, tags=["Community"])
    async def create_user_report(slug: str, body: UserReportCreate, db: Database = Depends(get_db)):
        """Submit an observation; it expires 24 hours after submission."""
        lake = _get_lake(db, slug)
        report = db.insert_user_report(UserReport.submit(
            lake.id,
            user_id=body.user_id,
            status=body.status,
            surface_condition=body.surface_condition,
            comment=body.comment,
            latitude=body.latitude,
            longitude=body.longitude,
        ))
        return user_report_to_model(report)

    @app.post("/user-reports/{report_id}/upvote", tags=["Community"])
    async def upvote_user_report(report_id: int, db: Database = Depends(get_db)):
        upvotes = db.upvote_user_report(report_id)
        if upvotes is None:
            raise HTTPException(status_code=404, detail=f"No user report: {report_id}")
        return {"id": report_id, "upvotes": upvotes}

    # =========================================================================
    # System Status
    # =========================================================================

    @app.get("/status", response_model=SystemStatus, tags=["Status"])
    async def get_system_status(
        request: Request,
        db: Database = Depends(get_db),
        scheduler: IceScheduler = Depends(get_scheduler)
    ):
        """Get comprehensive system status."""
        last_refresh = db.get_last_refresh_time()
        summary = db.get_data_summary()
        risks = detect_risks(db, scheduler)

        if not risks:
            status = "healthy"
        elif len(risks) <= 1:
            status = "degraded"
        else:
            status = "unhealthy"

        return SystemStatus(
            status=status,
            uptime=get_uptime(getattr(request.app.state, "start_time", None)),
            scheduler_running=scheduler.is_running,
            last_refresh=_ts(last_refresh),
            is_stale=is_data_stale(last_refresh),
            stale_threshold_minutes=int(STALE_THRESHOLD.total_seconds() // 60),
            lake_count=summary["lake_count"],
            official_reports=summary["official_reports"],
            forecast_reports=summary["forecast_reports"],
            active_user_reports=summary["active_user_reports"],
            source_health=[SourceHealth(**s) for s in db.get_source_status()],
            risks=risks
        )

    # =========================================================================
    # Refresh Triggers
    # =========================================================================

    @app.post("/refresh", tags=["Admin"], dependencies=[Depends(require_service_key)])
    def trigger_refresh(scheduler: IceScheduler = Depends(get_scheduler)):
        """Scrape the status page now and reconcile official reports."""
        try:
            result = scheduler.run_scrape()
        except ConfigurationError as e:
            logger.error(f"Refresh aborted: {e}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": str(e), "timestamp": format_timestamp(utcnow())}
            )

        return {
            "success": result.success,
            "message": result.message,
            "results": result.to_dict(),
            "timestamp": format_timestamp(utcnow()),
        }

    @app.post("/forecast/refresh", tags=["Admin"], dependencies=[Depends(require_service_key)])
    def trigger_forecast(scheduler: IceScheduler = Depends(get_scheduler)):
        """Generate forecast reports for every lake now."""
        try:
            result = scheduler.run_forecast()
        except ConfigurationError as e:
            logger.error(f"Forecast aborted: {e}")
            return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
        return result.to_dict()

    @app.get("/refresh/results", tags=["Admin"])
    async def get_refresh_results(scheduler: IceScheduler = Depends(get_scheduler)):
        """Results of the last scrape and forecast runs."""
        return scheduler.get_scheduler_status()


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "icewatch.api:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "false").lower() == "true"
    )
