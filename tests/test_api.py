"""Tests for the REST API using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from icewatch.api import create_app
from icewatch.config import Settings

from conftest import FakeStatusFetcher, FakeWeatherFetcher

AUTH = {"Authorization": "Bearer test-key"}


@pytest.fixture
def client(settings):
    app = create_app(settings, status_fetcher=FakeStatusFetcher(), weather_fetcher=FakeWeatherFetcher())
    with TestClient(app) as test_client:
        yield test_client


class TestInfo:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "icewatch API"

    def test_health_reports_risks(self, client):
        data = client.get("/health").json()
        assert data["database"] == "connected"
        assert data["scheduler"] == "stopped"
        assert data["status"] == "degraded"
        assert "Ice data is stale" in data["risks"]


class TestLakes:

    def test_list_seeded_lakes(self, client):
        lakes = client.get("/lakes").json()
        assert len(lakes) == 14
        assert all(lake["status"] is None for lake in lakes)

    def test_unknown_lake(self, client):
        assert client.get("/lakes/malaren").status_code == 404
        assert client.get("/lakes/malaren/reports").status_code == 404


class TestRefresh:

    def test_requires_service_key(self, client):
        assert client.post("/refresh").status_code == 401
        assert client.post("/refresh", headers={"Authorization": "Bearer wrong"}).status_code == 401

    def test_refresh_updates_status(self, client):
        response = client.post("/refresh", headers=AUTH)
        assert response.status_code == 200

        data = response.json()
        assert data["success"] is True
        assert data["results"]["processed"] == 5
        assert data["results"]["notFound"] == []

        lake = client.get("/lakes/drevviken").json()
        assert lake["status"] == "safe"
        assert lake["status_source"] == "official"
        assert lake["ice_thickness_cm"] == 15

        reports = client.get("/lakes/drevviken/reports").json()
        assert len(reports) == 1
        assert reports[0]["raw_text"].startswith("Drevviken: ")

    def test_repeated_refresh_keeps_one_official_report(self, client):
        for _ in range(3):
            client.post("/refresh", headers=AUTH)
        assert len(client.get("/lakes/judarn/reports").json()) == 1

    def test_missing_credentials(self, tmp_path):
        settings = Settings(
            db_path=str(tmp_path / "nokey.db"),
            service_key=None,
            run_on_startup=False,
            scheduler_enabled=False,
        )
        fetcher = FakeStatusFetcher()
        app = create_app(settings, status_fetcher=fetcher, weather_fetcher=FakeWeatherFetcher())
        with TestClient(app) as client:
            response = client.post("/refresh")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert "ICEWATCH_SERVICE_KEY" in response.json()["error"]
        assert fetcher.calls == 0

    def test_forecast_refresh(self, client):
        response = client.post("/forecast/refresh", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["forecastsGenerated"] == 14

        lake = client.get("/lakes/bornsjon").json()
        assert lake["status_source"] == "forecast"

    def test_last_results(self, client):
        assert client.get("/refresh/results").json()["last_results"]["scrape"] is None
        client.post("/refresh", headers=AUTH)
        results = client.get("/refresh/results").json()
        assert results["is_running"] is False
        assert results["last_results"]["scrape"]["updated"] == 5


class TestUserReports:

    def test_submit_and_list(self, client):
        response = client.post("/lakes/flaten/user-reports", json={
            "status": "safe",
            "surface_condition": "smooth",
            "comment": "Blankis hela vägen runt",
        })
        assert response.status_code == 201
        report = response.json()
        assert report["freshness"] == "fresh"
        assert report["upvotes"] == 0
        assert report["expires_at"] > report["reported_at"]

        reports = client.get("/lakes/flaten/user-reports").json()
        assert [r["id"] for r in reports] == [report["id"]]
        assert client.get("/lakes/flaten").json()["recent_report_count"] == 1

    def test_invalid_status(self, client):
        response = client.post("/lakes/flaten/user-reports", json={"status": "melting"})
        assert response.status_code == 422

    def test_upvote(self, client):
        report = client.post("/lakes/judarn/user-reports", json={"comment": "Tunt vid vassen"}).json()

        response = client.post(f"/user-reports/{report['id']}/upvote")
        assert response.json() == {"id": report["id"], "upvotes": 1}

    def test_upvote_missing(self, client):
        assert client.post("/user-reports/999/upvote").status_code == 404


class TestSystemStatus:

    def test_status_after_refresh(self, client):
        client.post("/refresh", headers=AUTH)
        data = client.get("/status").json()

        assert data["lake_count"] == 14
        assert data["official_reports"] == 5
        assert data["is_stale"] is False
        assert data["scheduler_running"] is False
        assert "Scheduler not running" in data["risks"]
        assert data["source_health"][0]["status"] == "ok"
        assert data["stale_threshold_minutes"] == 30
