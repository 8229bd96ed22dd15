"""Command line entry point.

Usage:
    python -m icewatch serve                 # Run the API with the scheduler
    python -m icewatch scrape                # Scrape the status page once
    python -m icewatch forecast              # Generate forecast reports once
    python -m icewatch import-lakes FILE     # Import lakes from GeoJSON
    python -m icewatch import-lakes --seed   # Import the built-in lake list
    python -m icewatch status                # Show current status per lake
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import ConfigurationError, Settings, configure_logging
from .database import Database
from .forecast import run_forecast
from .freshness import is_data_stale
from .lakes import SEED_LAKES, lakes_from_geojson
from .reconciler import run_scrape

logger = logging.getLogger(__name__)


def _scrape(settings: Settings, args: argparse.Namespace) -> int:
    db = Database(settings.db_path)
    try:
        result = run_scrape(db, settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2
    finally:
        db.close()
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


def _forecast(settings: Settings, args: argparse.Namespace) -> int:
    db = Database(settings.db_path)
    try:
        result = run_forecast(db, settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return 2
    finally:
        db.close()
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def _import_lakes(settings: Settings, args: argparse.Namespace) -> int:
    if args.seed:
        lakes = SEED_LAKES
    elif args.file:
        lakes = lakes_from_geojson(json.loads(Path(args.file).read_text(encoding="utf-8")))
    else:
        logger.error("Give a GeoJSON file or --seed")
        return 2

    db = Database(settings.db_path)
    try:
        added = db.insert_lakes(lakes)
    finally:
        db.close()
    print(f"Imported {added} of {len(lakes)} lakes")
    return 0


def _status(settings: Settings, args: argparse.Namespace) -> int:
    db = Database(settings.db_path)
    try:
        last_refresh = db.get_last_refresh_time()
        lakes = db.get_lakes_with_status()
    finally:
        db.close()

    print()
    print("=" * 60)
    print("Lake Ice Status")
    print("=" * 60)
    print(f"Database: {settings.db_path}")
    print(f"Last refresh: {last_refresh.isoformat() if last_refresh else 'never'}"
          f"{' (stale)' if is_data_stale(last_refresh) else ''}")
    print("-" * 60)
    for lake in lakes:
        status = lake.status.value if lake.status else "-"
        source = f" [{lake.status_source.value}]" if lake.status_source else ""
        thickness = f" {lake.ice_thickness_cm} cm" if lake.ice_thickness_cm else ""
        print(f"  {lake.name:<16} {status:<10}{thickness}{source}  reports: {lake.recent_report_count}")
    print("=" * 60)
    return 0


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    if settings.debug:
        logger.warning("Auto-reload is not available when serving a configured app")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="icewatch", description="Lake ice status service")
    parser.add_argument("--db", help="SQLite database path (overrides ICEWATCH_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the API server").set_defaults(handler=_serve)
    subparsers.add_parser("scrape", help="Scrape the status page once").set_defaults(handler=_scrape)
    subparsers.add_parser("forecast", help="Generate forecast reports once").set_defaults(handler=_forecast)
    subparsers.add_parser("status", help="Show current status per lake").set_defaults(handler=_status)

    import_parser = subparsers.add_parser("import-lakes", help="Import lake reference data")
    import_parser.add_argument("file", nargs="?", help="GeoJSON FeatureCollection of lakes")
    import_parser.add_argument("--seed", action="store_true", help="Import the built-in lake list")
    import_parser.set_defaults(handler=_import_lakes)

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.db:
        settings.db_path = args.db
    configure_logging(settings.log_level)

    return args.handler(settings, args)


if __name__ == "__main__":
    sys.exit(main())
