"""
API endpoint tests for FastAPI application.
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from floodpeaks.cache import new_cache, save_cache
from floodpeaks.main import app
from floodpeaks.models import Category, Event
from floodpeaks.sites import SEA_BRIGHT_THRESHOLDS_NAVD88


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point the API at a temporary cache directory holding one cache."""
    monkeypatch.setenv("FLOODPEAKS_DATA_DIR", str(tmp_path))

    cache = new_cache('01407600', 'NAVD88', SEA_BRIGHT_THRESHOLDS_NAVD88)
    cache.method_tag = 'crest_anchored_highs_v1'
    cache.last_processed = utc(2026, 3, 1)
    cache.events = [
        Event(utc(2026, 1, 10, 17, 15), 3.6, utc(2026, 1, 10, 17, 0), Category.MINOR),
        Event(utc(2026, 1, 11, 5, 45), 2.4, utc(2026, 1, 11, 5, 30), Category.NONE),
        Event(utc(2026, 2, 2, 6, 0), 5.3, utc(2026, 2, 2, 6, 20), Category.MAJOR),
    ]
    save_cache(cache, str(tmp_path / 'peaks_navd88.json'))
    return tmp_path


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["sites"] == ["sea-bright-nwps", "sea-bright-usgs"]

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestSitesEndpoint:
    """Tests for the /api/v1/sites endpoint."""

    def test_lists_sites(self, client):
        response = client.get("/api/v1/sites")
        assert response.status_code == 200
        usgs = {s["key"]: s for s in response.json()}["sea-bright-usgs"]
        assert usgs["site"] == "01407600"
        assert usgs["mode"] == "crest"
        assert usgs["datum"] == "NAVD88"


class TestPeaksEndpoint:
    """Tests for the /api/v1/peaks endpoint."""

    def test_returns_cache_document(self, client, data_dir):
        response = client.get("/api/v1/peaks/sea-bright-usgs")
        assert response.status_code == 200
        data = response.json()
        assert data["site"] == "01407600"
        assert data["methodTag"] == "crest_anchored_highs_v1"
        assert data["thresholds"] == {"minor": 3.1, "moderate": 4.1, "major": 5.1}
        assert data["lastProcessedTime"] == "2026-03-01T00:00:00Z"
        assert len(data["events"]) == 3

    def test_event_structure(self, client, data_dir):
        """Events carry UTC and local observed times plus the crest key."""
        data = client.get("/api/v1/peaks/sea-bright-usgs").json()
        event = data["events"][0]
        assert event["observedTime"] == "2026-01-10T17:15:00Z"
        assert event["key"] == "2026-01-10T17:00:00Z"
        assert event["category"] == "Minor"
        assert event["observedTimeLocal"] == "2026-01-10T12:15:00-05:00"
        assert data["timezone"] == "America/New_York"

    def test_category_filter(self, client, data_dir):
        data = client.get("/api/v1/peaks/sea-bright-usgs?category=minor").json()
        assert [e["category"] for e in data["events"]] == ["Minor", "Major"]

        data = client.get("/api/v1/peaks/sea-bright-usgs?category=major").json()
        assert [e["value"] for e in data["events"]] == [5.3]

    def test_time_range_filter(self, client, data_dir):
        """start is inclusive, end is exclusive."""
        response = client.get(
            "/api/v1/peaks/sea-bright-usgs",
            params={"start": "2026-01-10T17:15:00Z", "end": "2026-02-02T06:00:00Z"},
        )
        assert response.status_code == 200
        assert [e["observedTime"] for e in response.json()["events"]] == [
            "2026-01-10T17:15:00Z",
            "2026-01-11T05:45:00Z",
        ]

    def test_invalid_category(self, client, data_dir):
        response = client.get("/api/v1/peaks/sea-bright-usgs?category=severe")
        assert response.status_code == 422

    def test_invalid_date(self, client, data_dir):
        response = client.get("/api/v1/peaks/sea-bright-usgs?start=not-a-date")
        assert response.status_code == 400

    def test_unknown_site(self, client, data_dir):
        response = client.get("/api/v1/peaks/atlantis")
        assert response.status_code == 404

    def test_site_without_cache(self, client, data_dir):
        response = client.get("/api/v1/peaks/sea-bright-nwps")
        assert response.status_code == 404

    def test_broken_cache_is_server_error(self, client, data_dir):
        (data_dir / 'peaks_navd88.json').write_text('{"events": []}')
        response = client.get("/api/v1/peaks/sea-bright-usgs")
        assert response.status_code == 500
        assert "ref:" in response.json()["detail"]
