import pytest
from fastapi.testclient import TestClient

from milo.core.config import Settings, get_settings
from milo.main import app
from milo.services.health_service import HealthService


@pytest.fixture(autouse=True)
def reset_settings() -> None:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_health_endpoint_returns_expected_shape() -> None:
    client = TestClient(app)

    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "service" in data
    assert "version" in data
    assert "environment" in data
    assert "timestamp" in data
    assert set(data["integrations"]) == {"gemini", "google_calendar", "sendgrid", "gmail_relay"}


def test_health_endpoint_is_available_under_v1_prefix() -> None:
    client = TestClient(app)

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_integration_flags_follow_configured_credentials() -> None:
    settings = Settings(
        user_data_store="memory",
        gemini_api_key="gemini-key",
        google_client_id="",
        google_client_secret="",
        sendgrid_api_key="sg-key",
        sendgrid_sender="milo@example.com",
        gmail_client_id="",
        gmail_client_secret="",
        gmail_refresh_token="",
        gmail_sender="",
    )

    status = HealthService(settings).get_status()

    assert status.user_data_store == "memory"
    assert status.integrations == {
        "gemini": True,
        "google_calendar": False,
        "sendgrid": True,
        "gmail_relay": False,
    }
