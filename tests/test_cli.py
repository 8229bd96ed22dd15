"""Tests for the command line entry point."""

import json

import pytest

from icewatch import cli
from icewatch.database import Database
from icewatch.reconciler import run_scrape

from conftest import FakeStatusFetcher


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    monkeypatch.delenv("ICEWATCH_SERVICE_KEY", raising=False)
    return str(tmp_path / "cli.db")


def test_import_seed(db_path, capsys):
    assert cli.main(["--db", db_path, "import-lakes", "--seed"]) == 0
    assert "Imported 14 of 14 lakes" in capsys.readouterr().out

    assert cli.main(["--db", db_path, "import-lakes", "--seed"]) == 0
    assert "Imported 0 of 14 lakes" in capsys.readouterr().out


def test_import_geojson(db_path, tmp_path, capsys):
    path = tmp_path / "lakes.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": [{
        "type": "Feature",
        "properties": {"name": "Kvarnsjön"},
        "geometry": {"type": "Polygon", "coordinates": [
            [[18.0, 59.0], [18.01, 59.0], [18.01, 59.01], [18.0, 59.01], [18.0, 59.0]]
        ]},
    }]}), encoding="utf-8")

    assert cli.main(["--db", db_path, "import-lakes", str(path)]) == 0

    db = Database(db_path)
    try:
        assert db.get_lake_by_slug("kvarnsjon").name == "Kvarnsjön"
    finally:
        db.close()


def test_import_needs_source(db_path):
    assert cli.main(["--db", db_path, "import-lakes"]) == 2


def test_scrape_without_credentials(db_path):
    assert cli.main(["--db", db_path, "scrape"]) == 2


def test_scrape(db_path, monkeypatch, capsys):
    monkeypatch.setenv("ICEWATCH_SERVICE_KEY", "test-key")
    monkeypatch.setattr(
        cli, "run_scrape",
        lambda db, settings: run_scrape(db, settings, fetcher=FakeStatusFetcher()),
    )
    cli.main(["--db", db_path, "import-lakes", "--seed"])
    capsys.readouterr()

    assert cli.main(["--db", db_path, "scrape"]) == 0
    output = capsys.readouterr().out
    assert json.loads(output)["updated"] == 5

    assert cli.main(["--db", db_path, "status"]) == 0
    output = capsys.readouterr().out
    assert "Drevviken" in output
    assert "safe" in output


def test_serve_uses_db_override(db_path, monkeypatch):
    served = {}

    def fake_run(app, host, port):
        served.update(app=app, host=host, port=port)

    monkeypatch.setattr("uvicorn.run", fake_run)

    assert cli.main(["--db", db_path, "serve"]) == 0
    assert served["app"].state.settings.db_path == db_path
