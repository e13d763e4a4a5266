import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from rental_request_service.app.main import app
from rental_request_service.app.models import UserDB, UserRole, RequestStatsDB, NotificationDB
from rental_request_service.infrastructure.database.connection import get_db


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = lambda: MagicMock()
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)

@patch("rental_request_service.app.api.v1.endpoints.stats.read_models.get_global_stats", new_callable=AsyncMock)
@patch("rental_request_service.app.api.v1.endpoints.stats.MongoPartyDirectory")
def test_stats_for_staff(MockDirectory, mock_get_stats, client):
    MockDirectory.return_value.get_user = AsyncMock(return_value=UserDB(id="admin-1", first_name="Alice", last_name="Martin", role=UserRole.ADMIN))
    mock_get_stats.return_value = RequestStatsDB(total=4, pending=1, accepted=2, completed=1, revenue=2400.0)

    response = client.get("/api/v1/stats", headers={"X-User-Id": "admin-1"})

    assert response.status_code == 200
    assert response.json()["revenue"] == 2400.0

@patch("rental_request_service.app.api.v1.endpoints.stats.read_models.get_global_stats", new_callable=AsyncMock)
@patch("rental_request_service.app.api.v1.endpoints.stats.MongoPartyDirectory")
def test_stats_for_visitor_is_403(MockDirectory, mock_get_stats, client):
    MockDirectory.return_value.get_user = AsyncMock(return_value=UserDB(id="visitor-1", first_name="Chloe", last_name="Petit"))

    response = client.get("/api/v1/stats", headers={"X-User-Id": "visitor-1"})

    assert response.status_code == 403
    mock_get_stats.assert_not_called()

@patch("rental_request_service.app.api.v1.endpoints.stats.read_models.get_unread_notification_count", new_callable=AsyncMock)
@patch("rental_request_service.app.api.v1.endpoints.stats.read_models.list_notifications_for_user", new_callable=AsyncMock)
def test_notification_feed(mock_list, mock_unread, client):
    mock_list.return_value = [
        NotificationDB(dedupe_key="req-1:RequestAccepted:2:visitor-1", user_id="visitor-1", category="request", title="Request accepted", body="Accepted."),
    ]
    mock_unread.return_value = 1

    response = client.get("/api/v1/notifications?limit=5", headers={"X-User-Id": "visitor-1"})

    assert response.status_code == 200
    assert response.json()["unread"] == 1
    assert response.json()["items"][0]["title"] == "Request accepted"
    assert mock_list.call_args.kwargs["limit"] == 5

def test_health_reports_mongo_status(client):
    db = MagicMock()
    db.command = AsyncMock(side_effect=RuntimeError("no server"))
    app.dependency_overrides[get_db] = lambda: db

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["components"]["mongodb"] == "disconnected"
    assert response.json()["components"]["kafka"] in ("disabled", "connected", "degraded")
