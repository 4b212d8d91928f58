"""Tests for the HTTP API and settings."""

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from core.rate_limits import HardCaps
from mcp_server import app, get_context

from conftest import page_responder


@pytest.fixture
def client(make_context):
    context, session = make_context(page_responder([
        {"unique_key": "1", "created_date": "2025-01-04T10:00:00.000",
         "complaint_type": "Noise - Street/Sidewalk", "borough": "MANHATTAN"},
    ]))
    app.dependency_overrides[get_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["endpoints"]["tools"] == "/api/tools"


def test_health_reports_caches(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["query_cache"]["enabled"] is True
    assert "current_rate" in body["rate_limit_info"]


def test_list_tools(client):
    names = [tool["name"] for tool in client.get("/api/tools").json()["tools"]]
    assert names == [
        "search_311_complaints",
        "analyze_311_trends",
        "search_hpd_violations",
        "search_street_closures",
    ]


def test_call_tool_by_name(client):
    response = client.post("/api/tools/search_311_complaints", json={"days": 7})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1


def test_unknown_tool_is_404(client):
    assert client.post("/api/tools/forecast_weather", json={}).status_code == 404


def test_validation_error_is_400(client):
    response = client.get("/api/311/complaints", params={"borough": "Atlantis"})
    assert response.status_code == 400
    assert response.json()["error"]["type"] == "VALIDATION_ERROR"


def test_hard_cap_is_429(client, requester):
    requester.hard_caps = HardCaps(max_limit=50)
    response = client.get("/api/311/complaints", params={"limit": 100})

    assert response.status_code == 429
    assert response.json()["error"]["type"] == "RATE_LIMIT"


def test_settings_token_aliases(monkeypatch):
    monkeypatch.setenv("NYC_APP_TOKEN", "abc123")
    monkeypatch.setenv("MAX_DAYS", "180")
    settings = Settings(_env_file=None)

    assert settings.has_api_token
    assert settings.api_headers == {"X-App-Token": "abc123"}
    assert settings.hard_caps.max_days == 180
    assert settings.retry_policy.max_attempts == 3


def test_settings_reject_bad_log_level():
    with pytest.raises(ValueError):
        Settings(_env_file=None, log_level="LOUD")
