"""
Tests for the health, maintenance and dashboard routes.

Uses FastAPI TestClient with the DatabaseService dependency replaced by a
mock, so no database is needed.
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytz
from fastapi.testclient import TestClient

from compete.api.dependencies import get_database_service
from compete.api.main import app


@pytest.fixture
def database():
    """Mocked DatabaseService wired into the app."""
    mock = MagicMock()
    mock.health_check = AsyncMock()
    mock.initialize = AsyncMock()
    mock.cleanup = AsyncMock()
    mock.get_global_stats = AsyncMock()
    mock.global_search = AsyncMock()
    app.dependency_overrides[get_database_service] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create a TestClient for the app."""
    return TestClient(app)


# ============================================================================
# GET /api/health
# ============================================================================


def test_health_ok(database, client):
    database.health_check.return_value = {
        "status": "healthy",
        "collections": {"User": {"documents": 3, "indexes": 6}},
        "errors": [],
        "timestamp": datetime(2024, 6, 15, 12, 0, tzinfo=pytz.UTC),
    }

    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["collections"]["User"]["indexes"] == 6
    assert data["timestamp"].startswith("2024-06-15T12:00:00")


def test_health_unhealthy_is_503(database, client):
    database.health_check.return_value = {
        "status": "unhealthy",
        "collections": {},
        "errors": ["User: connection lost"],
        "timestamp": datetime(2024, 6, 15, 12, 0, tzinfo=pytz.UTC),
    }

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["errors"] == ["User: connection lost"]


def test_routes_answer_503_without_database(client):
    """No DatabaseService on app.state means start-up could not connect."""
    response = client.get("/api/admin/stats")

    assert response.status_code == 503
    assert response.json()["detail"] == "Database is not available"


# ============================================================================
# Maintenance endpoints
# ============================================================================


def test_init_database(database, client):
    response = client.post("/api/admin/init-database")

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Index creation completed"}
    database.initialize.assert_awaited_once()


def test_init_database_failure(database, client):
    database.initialize.side_effect = RuntimeError("boom")

    response = client.post("/api/admin/init-database")

    assert response.status_code == 500
    assert "boom" in response.json()["detail"]


def test_cleanup_database(database, client):
    database.cleanup.return_value = {"expiredSessions": 2, "expiredTokens": 0, "oldNotifications": 5}

    response = client.post("/api/admin/cleanup-database")

    assert response.status_code == 200
    assert response.json()["removed"]["oldNotifications"] == 5


@patch("compete.api.routes.admin.update_all_competition_statuses", new_callable=AsyncMock)
def test_update_statuses(mock_update, database, client):
    mock_update.return_value = [
        {"competitionId": "c1", "oldStatus": "OPEN", "newStatus": "CLOSED", "reason": "Fermeture des inscriptions"}
    ]

    response = client.post("/api/admin/update-statuses")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["count"] == 1
    assert data["updates"][0]["newStatus"] == "CLOSED"
    mock_update.assert_awaited_once_with(database.competitions)


@patch("compete.api.routes.admin.update_all_competition_statuses", new_callable=AsyncMock)
def test_update_statuses_failure(mock_update, database, client):
    mock_update.side_effect = RuntimeError("timeout")

    response = client.post("/api/admin/update-statuses")

    assert response.status_code == 500


# ============================================================================
# Dashboard and search
# ============================================================================


def test_global_stats(database, client):
    database.get_global_stats.return_value = {
        "users": {"total": 10, "recent": 2},
        "competitions": {"total": 3, "active": 1},
        "teams": {"total": 4, "active": 4},
        "matches": {"total": 6, "upcoming": 2},
    }

    response = client.get("/api/admin/stats")

    assert response.status_code == 200
    assert response.json()["users"] == {"total": 10, "recent": 2}


def test_search_forwards_query(database, client):
    database.global_search.return_value = {"competitions": [], "teams": [], "users": []}

    response = client.get("/api/search?q=abidjan&user_id=abc")

    assert response.status_code == 200
    assert response.json() == {"competitions": [], "teams": [], "users": []}
    database.global_search.assert_awaited_once_with("abidjan", user_id="abc")
