"""
Database module for icewatch.

Handles SQLite persistence with:
- Reference table for lakes (imported, never edited)
- Ice reports: one live official row per lake, append-only forecasts
- User reports with a fixed 24 hour expiry
- Source health metrics for the external feeds
- Change events published to an EventBus after each committed write
"""

import json
import sqlite3
import threading
import logging
from typing import List, Dict, Any, Iterable, Optional
from datetime import datetime, timedelta
from pathlib import Path

from .events import ChangeEvent, EventBus, ICE_REPORTS_CHANNEL, USER_REPORTS_CHANNEL
from .models import (
    IceReport,
    IceStatus,
    Lake,
    LakeStatus,
    NewLake,
    ReportSource,
    SurfaceCondition,
    UserReport,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "icewatch.db"

# Sources that feed the aggregate view and the staleness check
AGGREGATE_SOURCES = (ReportSource.OFFICIAL.value, ReportSource.FORECAST.value)

USER_REPORT_HISTORY_DAYS = 30

_LAKE_STATUS_SQL = """
    SELECT
        l.id, l.name, l.slug, l.region, l.latitude, l.longitude,
        r.status, r.source AS status_source, r.ice_thickness_cm,
        r.surface_condition, r.scraped_at AS last_updated,
        (SELECT COUNT(*) FROM user_reports u
         WHERE u.lake_id = l.id AND u.expires_at > :now) AS recent_report_count
    FROM lakes l
    LEFT JOIN ice_reports r ON r.id = (
        SELECT r2.id FROM ice_reports r2
        WHERE r2.lake_id = l.id
          AND r2.source IN ('official', 'forecast')
          AND (r2.valid_until IS NULL OR r2.valid_until > :now)
        ORDER BY r2.scraped_at DESC, r2.id DESC
        LIMIT 1
    )
"""


class StorageError(Exception):
    """Raised when a write cannot be committed."""
    pass


def _enum_or_none(enum_cls, value):
    return enum_cls(value) if value is not None else None


def _value_or_none(member):
    return member.value if member is not None else None


class Database:
    """
    SQLite database wrapper with thread-safe operations.

    - WAL mode for concurrent reads during writes
    - Automatic schema initialization
    - Partial unique index keeps a single official report per lake
    - Optional EventBus receives a ChangeEvent after each report write
    """

    def __init__(self, db_path: str = None, events: Optional[EventBus] = None) -> None:
        self._db_path = str(db_path or DEFAULT_DB_PATH)
        self._lock = threading.Lock()
        self._conn = None
        self.events = events
        self._connect()
        self._init_schema()
        logger.info(f"Database initialized at {self._db_path}")

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> None:
        """Establish database connection with WAL mode."""
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS lakes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    region TEXT,
                    latitude REAL,
                    longitude REAL,
                    area_km2 REAL,
                    typical_freeze_date TEXT,
                    geometry TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS ice_reports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lake_id INTEGER NOT NULL REFERENCES lakes(id),
                    status TEXT NOT NULL,
                    source TEXT NOT NULL,
                    ice_thickness_cm INTEGER,
                    surface_condition TEXT,
                    temperature_avg REAL,
                    wind_speed_avg REAL,
                    raw_text TEXT,
                    scraped_at TEXT NOT NULL,
                    valid_from TEXT NOT NULL,
                    valid_until TEXT
                )
            """)

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS user_reports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    lake_id INTEGER NOT NULL REFERENCES lakes(id),
                    user_id TEXT,
                    status TEXT,
                    surface_condition TEXT,
                    comment TEXT,
                    latitude REAL,
                    longitude REAL,
                    upvotes INTEGER NOT NULL DEFAULT 0,
                    reported_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

            # Source status table for feed health tracking
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS source_status (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_url TEXT NOT NULL UNIQUE,
                    source_name TEXT,
                    last_fetch_at TEXT,
                    last_success_at TEXT,
                    fetch_count INTEGER DEFAULT 0,
                    success_count INTEGER DEFAULT 0,
                    error_count INTEGER DEFAULT 0,
                    last_error TEXT,
                    status TEXT DEFAULT 'unknown',
                    avg_response_time_ms INTEGER DEFAULT 0,
                    consecutive_failures INTEGER DEFAULT 0,
                    entries_count INTEGER DEFAULT 0
                )
            """)

            self._conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_one_official_report
                ON ice_reports(lake_id) WHERE source = 'official'
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_report_lake_time
                ON ice_reports(lake_id, scraped_at)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_report_lake
                ON user_reports(lake_id, expires_at)
            """)

    def _publish(self, channel: str, lake_id: int, row: Dict[str, Any], event: str = "INSERT") -> None:
        if self.events is not None:
            self.events.publish(ChangeEvent(channel=channel, lake_id=lake_id, row=row, event=event))

    # =========================================================================
    # Lake Operations (Reference Data)
    # =========================================================================

    def insert_lakes(self, lakes: Iterable[NewLake]) -> int:
        """Import lakes; rows whose slug already exists are left untouched."""
        created_at = format_timestamp(utcnow())
        added = 0
        with self._lock:
            for lake in lakes:
                cursor = self._conn.execute("""
                    INSERT OR IGNORE INTO lakes
                    (name, slug, region, latitude, longitude, area_km2,
                     typical_freeze_date, geometry, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (lake.name, lake.slug, lake.region, lake.latitude,
                      lake.longitude, lake.area_km2, lake.typical_freeze_date,
                      json.dumps(lake.geometry) if lake.geometry else None,
                      created_at))
                added += cursor.rowcount
        if added:
            logger.info(f"Imported {added} lakes")
        return added

    def _row_to_lake(self, row: sqlite3.Row) -> Lake:
        return Lake(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            region=row["region"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            area_km2=row["area_km2"],
            typical_freeze_date=row["typical_freeze_date"],
            geometry=json.loads(row["geometry"]) if row["geometry"] else None,
        )

    def get_lakes(self) -> List[Lake]:
        with self._lock:
            cursor = self._conn.execute("SELECT * FROM lakes ORDER BY name ASC")
            return [self._row_to_lake(row) for row in cursor.fetchall()]

    def get_lake(self, lake_id: int) -> Optional[Lake]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM lakes WHERE id = ?", (lake_id,)
            ).fetchone()
            return self._row_to_lake(row) if row else None

    def get_lake_by_slug(self, slug: str) -> Optional[Lake]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM lakes WHERE slug = ?", (slug,)
            ).fetchone()
            return self._row_to_lake(row) if row else None

    # =========================================================================
    # Ice Report Operations
    # =========================================================================

    @staticmethod
    def _report_params(report: IceReport) -> tuple:
        return (
            report.lake_id,
            report.status.value,
            report.source.value,
            report.ice_thickness_cm,
            _value_or_none(report.surface_condition),
            report.temperature_avg,
            report.wind_speed_avg,
            report.raw_text,
            format_timestamp(report.scraped_at),
            format_timestamp(report.valid_from),
            format_timestamp(report.valid_until) if report.valid_until else None,
        )

    _INSERT_REPORT_SQL = """
        INSERT INTO ice_reports
        (lake_id, status, source, ice_thickness_cm, surface_condition,
         temperature_avg, wind_speed_avg, raw_text, scraped_at, valid_from,
         valid_until)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    def replace_official_report(self, report: IceReport) -> int:
        """
        Atomically replace the lake's official report with a new one.

        The delete and the insert share one transaction, so readers never see
        zero or two official rows for the lake.
        """
        if report.source is not ReportSource.OFFICIAL:
            raise ValueError("replace_official_report only accepts official reports")

        params = self._report_params(report)
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                self._conn.execute("""
                    DELETE FROM ice_reports
                    WHERE lake_id = ? AND source = 'official'
                """, (report.lake_id,))
                cursor = self._conn.execute(self._INSERT_REPORT_SQL, params)
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                logger.error(f"Failed to replace official report for lake {report.lake_id}: {e}")
                raise StorageError(str(e)) from e
            report_id = cursor.lastrowid

        report.id = report_id
        self._publish(ICE_REPORTS_CHANNEL, report.lake_id, {
            "id": report_id,
            "lake_id": report.lake_id,
            "status": report.status.value,
            "source": report.source.value,
        })
        return report_id

    def insert_report(self, report: IceReport) -> int:
        """Append a non-official report (forecast, satellite)."""
        if report.source is ReportSource.OFFICIAL:
            raise ValueError("Official reports must go through replace_official_report")

        with self._lock:
            try:
                cursor = self._conn.execute(self._INSERT_REPORT_SQL, self._report_params(report))
            except sqlite3.Error as e:
                logger.error(f"Failed to insert {report.source.value} report: {e}")
                raise StorageError(str(e)) from e
            report_id = cursor.lastrowid

        report.id = report_id
        self._publish(ICE_REPORTS_CHANNEL, report.lake_id, {
            "id": report_id,
            "lake_id": report.lake_id,
            "status": report.status.value,
            "source": report.source.value,
        })
        return report_id

    def _row_to_report(self, row: sqlite3.Row) -> IceReport:
        return IceReport(
            id=row["id"],
            lake_id=row["lake_id"],
            status=IceStatus(row["status"]),
            source=ReportSource(row["source"]),
            ice_thickness_cm=row["ice_thickness_cm"],
            surface_condition=_enum_or_none(SurfaceCondition, row["surface_condition"]),
            temperature_avg=row["temperature_avg"],
            wind_speed_avg=row["wind_speed_avg"],
            raw_text=row["raw_text"],
            scraped_at=parse_timestamp(row["scraped_at"]),
            valid_from=parse_timestamp(row["valid_from"]),
            valid_until=parse_timestamp(row["valid_until"]),
        )

    def get_lake_reports(self, lake_id: int, limit: int = 20) -> List[IceReport]:
        """Most recent reports for a lake, newest first."""
        with self._lock:
            cursor = self._conn.execute("""
                SELECT * FROM ice_reports
                WHERE lake_id = ?
                ORDER BY scraped_at DESC, id DESC
                LIMIT ?
            """, (lake_id, limit))
            return [self._row_to_report(row) for row in cursor.fetchall()]

    def count_reports(self, lake_id: int, source: ReportSource) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM ice_reports WHERE lake_id = ? AND source = ?",
                (lake_id, source.value)
            ).fetchone()[0]

    def get_last_refresh_time(self) -> Optional[datetime]:
        """Timestamp of the newest official or forecast report, if any."""
        with self._lock:
            row = self._conn.execute("""
                SELECT MAX(scraped_at) FROM ice_reports
                WHERE source IN ('official', 'forecast')
            """).fetchone()
            return parse_timestamp(row[0])

    # =========================================================================
    # User Report Operations
    # =========================================================================

    def insert_user_report(self, report: UserReport) -> UserReport:
        with self._lock:
            try:
                cursor = self._conn.execute("""
                    INSERT INTO user_reports
                    (lake_id, user_id, status, surface_condition, comment,
                     latitude, longitude, upvotes, reported_at, expires_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """, (report.lake_id, report.user_id,
                      _value_or_none(report.status),
                      _value_or_none(report.surface_condition),
                      report.comment, report.latitude, report.longitude,
                      format_timestamp(report.reported_at),
                      format_timestamp(report.expires_at)))
            except sqlite3.Error as e:
                logger.error(f"Failed to insert user report: {e}")
                raise StorageError(str(e)) from e
            report.id = cursor.lastrowid
            report.upvotes = 0

        self._publish(USER_REPORTS_CHANNEL, report.lake_id, {
            "id": report.id,
            "lake_id": report.lake_id,
        })
        return report

    def upvote_user_report(self, report_id: int) -> Optional[int]:
        """Increment a report's upvotes; returns the new count or None if missing."""
        with self._lock:
            self._conn.execute(
                "UPDATE user_reports SET upvotes = upvotes + 1 WHERE id = ?",
                (report_id,)
            )
            row = self._conn.execute(
                "SELECT lake_id, upvotes FROM user_reports WHERE id = ?",
                (report_id,)
            ).fetchone()
        if row is None:
            return None
        self._publish(USER_REPORTS_CHANNEL, row["lake_id"], {
            "id": report_id,
            "lake_id": row["lake_id"],
            "upvotes": row["upvotes"],
        }, event="UPDATE")
        return row["upvotes"]

    def _row_to_user_report(self, row: sqlite3.Row) -> UserReport:
        return UserReport(
            id=row["id"],
            lake_id=row["lake_id"],
            user_id=row["user_id"],
            status=_enum_or_none(IceStatus, row["status"]),
            surface_condition=_enum_or_none(SurfaceCondition, row["surface_condition"]),
            comment=row["comment"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            upvotes=row["upvotes"],
            reported_at=parse_timestamp(row["reported_at"]),
            expires_at=parse_timestamp(row["expires_at"]),
        )

    def get_user_reports(
        self,
        lake_id: int,
        include_expired: bool = True,
        now: Optional[datetime] = None
    ) -> List[UserReport]:
        """User reports from the last 30 days, newest first."""
        now = now or utcnow()
        since = format_timestamp(now - timedelta(days=USER_REPORT_HISTORY_DAYS))
        query = """
            SELECT * FROM user_reports
            WHERE lake_id = ? AND reported_at > ?
        """
        params: list = [lake_id, since]
        if not include_expired:
            query += " AND expires_at > ?"
            params.append(format_timestamp(now))
        query += " ORDER BY reported_at DESC"

        with self._lock:
            cursor = self._conn.execute(query, params)
            return [self._row_to_user_report(row) for row in cursor.fetchall()]

    # =========================================================================
    # Aggregate View
    # =========================================================================

    def _row_to_lake_status(self, row: sqlite3.Row) -> LakeStatus:
        return LakeStatus(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            region=row["region"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            status=_enum_or_none(IceStatus, row["status"]),
            status_source=_enum_or_none(ReportSource, row["status_source"]),
            ice_thickness_cm=row["ice_thickness_cm"],
            surface_condition=_enum_or_none(SurfaceCondition, row["surface_condition"]),
            last_updated=parse_timestamp(row["last_updated"]),
            recent_report_count=row["recent_report_count"],
        )

    def get_lakes_with_status(self, now: Optional[datetime] = None) -> List[LakeStatus]:
        """Current status of every lake, computed at read time."""
        params = {"now": format_timestamp(now or utcnow())}
        with self._lock:
            cursor = self._conn.execute(_LAKE_STATUS_SQL + " ORDER BY l.name ASC", params)
            return [self._row_to_lake_status(row) for row in cursor.fetchall()]

    def get_lake_status(self, lake_id: int, now: Optional[datetime] = None) -> Optional[LakeStatus]:
        params = {"now": format_timestamp(now or utcnow()), "lake_id": lake_id}
        with self._lock:
            row = self._conn.execute(_LAKE_STATUS_SQL + " WHERE l.id = :lake_id", params).fetchone()
            return self._row_to_lake_status(row) if row else None

    # =========================================================================
    # Source Status Operations
    # =========================================================================

    def update_source_status(
        self,
        source_url: str,
        source_name: str,
        success: bool,
        entries_count: int = 0,
        error_message: Optional[str] = None,
        response_time_ms: int = 0
    ) -> None:
        """Record the outcome of one fetch against an external source."""
        with self._lock:
            now = format_timestamp(utcnow())
            status = "ok" if success else "error"

            existing = self._conn.execute(
                "SELECT fetch_count, avg_response_time_ms, consecutive_failures FROM source_status WHERE source_url = ?",
                (source_url,)
            ).fetchone()

            if existing is None:
                self._conn.execute("""
                    INSERT INTO source_status
                    (source_url, source_name, last_fetch_at, last_success_at,
                     fetch_count, success_count, error_count, last_error, status,
                     avg_response_time_ms, consecutive_failures, entries_count)
                    VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    source_url, source_name, now, now if success else None,
                    1 if success else 0, 0 if success else 1, error_message,
                    status, response_time_ms, 0 if success else 1, entries_count
                ))
                return

            fetch_count = existing["fetch_count"] or 0
            old_avg = existing["avg_response_time_ms"] or 0
            new_avg = int((old_avg * fetch_count + response_time_ms) / (fetch_count + 1))
            consecutive_failures = 0 if success else (existing["consecutive_failures"] or 0) + 1

            self._conn.execute("""
                UPDATE source_status SET
                    source_name = ?,
                    last_fetch_at = ?,
                    last_success_at = CASE WHEN ? THEN ? ELSE last_success_at END,
                    fetch_count = fetch_count + 1,
                    success_count = success_count + CASE WHEN ? THEN 1 ELSE 0 END,
                    error_count = error_count + CASE WHEN ? THEN 0 ELSE 1 END,
                    last_error = ?,
                    status = ?,
                    avg_response_time_ms = ?,
                    consecutive_failures = ?,
                    entries_count = ?
                WHERE source_url = ?
            """, (
                source_name, now, success, now, success, success,
                None if success else error_message, status, new_avg,
                consecutive_failures, entries_count, source_url
            ))

    def get_source_status(self) -> List[Dict[str, Any]]:
        """Health of every external source seen so far."""
        with self._lock:
            cursor = self._conn.execute("""
                SELECT
                    source_url, source_name, last_fetch_at, last_success_at,
                    fetch_count, success_count, error_count, last_error, status,
                    avg_response_time_ms, consecutive_failures, entries_count,
                    CASE WHEN fetch_count > 0
                         THEN ROUND(CAST(success_count AS FLOAT) / fetch_count * 100, 1)
                         ELSE 0 END as reliability_percent
                FROM source_status
                ORDER BY source_url
            """)
            return [dict(row) for row in cursor.fetchall()]

    def get_data_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Row counts across the report tables."""
        now_text = format_timestamp(now or utcnow())
        with self._lock:
            lake_count = self._conn.execute("SELECT COUNT(*) FROM lakes").fetchone()[0]
            official_count = self._conn.execute(
                "SELECT COUNT(*) FROM ice_reports WHERE source = 'official'"
            ).fetchone()[0]
            forecast_count = self._conn.execute(
                "SELECT COUNT(*) FROM ice_reports WHERE source = 'forecast'"
            ).fetchone()[0]
            active_user_reports = self._conn.execute(
                "SELECT COUNT(*) FROM user_reports WHERE expires_at > ?", (now_text,)
            ).fetchone()[0]

            return {
                "lake_count": lake_count,
                "official_reports": official_count,
                "forecast_reports": forecast_count,
                "active_user_reports": active_user_reports,
            }

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("Database connection closed")
