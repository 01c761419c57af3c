"""Tests for the FastAPI app (sheet action protocol, rate and projection)."""

import pytest
from fastapi.testclient import TestClient

from app.api import app, get_app_config, get_store
from dose_tracker.config import Config


@pytest.fixture
def api_config(tmp_path, events_csv):
    return Config(
        store_backend="csv",
        events_csv_path=str(events_csv),
        rate_settings_path=str(tmp_path / "rate_settings.json"),
        time_zone="UTC",
    )


@pytest.fixture
def client(api_config):
    app.dependency_overrides[get_app_config] = lambda: api_config
    yield TestClient(app)
    app.dependency_overrides.clear()


class BrokenStore:
    def fetch_events(self):
        raise RuntimeError("disk on fire")


def add(client, date, value):
    return client.post("/exec", params={"action": "add", "date": date, "floatValue": value})


class TestExecProtocol:
    def test_get_empty(self, client):
        resp = client.get("/exec", params={"action": "get"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": []}

    def test_add_then_get(self, client, t0):
        body = add(client, t0.isoformat(), "1").json()
        assert body == {"success": True, "message": "Data added successfully."}

        body = client.get("/exec", params={"action": "get"}).json()
        assert body == {"success": True, "data": [{"date": t0.isoformat(), "value": 1.0}]}

    @pytest.mark.parametrize(
        "params, error",
        [
            ({"action": "add", "date": "2025-03-14T08:00:00Z"}, "Missing 'date' or 'floatValue' parameter."),
            ({"action": "add", "floatValue": "1"}, "Missing 'date' or 'floatValue' parameter."),
            (
                {"action": "add", "date": "2025-03-14T08:00:00Z", "floatValue": "abc"},
                "Invalid floatValue: 'abc'. Must be a number.",
            ),
            (
                {"action": "add", "date": "2025-03-14T08:00:00Z", "floatValue": "-2"},
                "Invalid floatValue: '-2'. Must be a positive number.",
            ),
            (
                {"action": "add", "date": "someday", "floatValue": "1"},
                "Invalid date string: 'someday'. Could not parse.",
            ),
            ({"action": "remove"}, "Missing 'date' parameter for remove action."),
            ({"action": "dance"}, "Invalid action 'dance' for POST request."),
        ],
    )
    def test_post_errors(self, client, params, error):
        assert client.post("/exec", params=params).json() == {"success": False, "error": error}

    def test_remove(self, client, t0):
        add(client, t0.isoformat(), "1")
        add(client, t0.isoformat(), "2")

        date = "2025-03-14T08:00:00Z"
        body = client.post("/exec", params={"action": "remove", "date": date}).json()
        assert body == {"success": True, "removed": True, "message": f"Data for date '{date}' removed."}

        data = client.get("/exec", params={"action": "get"}).json()["data"]
        assert [row["value"] for row in data] == [1.0]

    def test_remove_missing(self, client):
        date = "2025-03-14T08:00:00Z"
        body = client.post("/exec", params={"action": "remove", "date": date}).json()
        assert body == {"success": True, "removed": False, "message": f"No data found for date '{date}'."}

    def test_ensure_headers(self, client):
        body = client.get("/exec", params={"action": "ensureHeaders"}).json()
        assert body == {
            "success": True,
            "message": "Headers added to empty sheet.",
            "headersChanged": True,
        }
        body = client.get("/exec", params={"action": "ensureHeaders"}).json()
        assert body["headersChanged"] is False

    def test_invalid_get_action(self, client):
        body = client.get("/exec").json()
        assert body == {"success": False, "error": "Invalid action 'None' for GET request."}

    def test_store_failure_is_an_error_envelope(self, client):
        app.dependency_overrides[get_store] = BrokenStore
        body = client.get("/exec", params={"action": "get"}).json()
        assert body["success"] is False
        assert "disk on fire" in body["error"]


class TestRate:
    def test_defaults(self, client):
        body = client.get("/rate").json()
        assert body == {"pills_per_interval": 1.0, "hours_per_interval": 8.0, "rate": 0.125}

    def test_put_then_get(self, client):
        body = client.put("/rate", json={"pills_per_interval": 1, "hours_per_interval": 12}).json()
        assert body["rate"] == pytest.approx(1.0 / 12.0)
        assert client.get("/rate").json() == body

    def test_zero_interval_gives_zero_rate(self, client):
        body = client.put("/rate", json={"pills_per_interval": 1, "hours_per_interval": 0}).json()
        assert body["rate"] == 0.0

    def test_missing_value_gives_zero_rate(self, client):
        body = client.put("/rate", json={"pills_per_interval": 2}).json()
        assert body == {"pills_per_interval": 2.0, "hours_per_interval": None, "rate": 0.0}


class TestProjection:
    def test_single_dose(self, client, t0):
        client.put("/rate", json={"pills_per_interval": 1, "hours_per_interval": 12})
        add(client, t0.isoformat(), "1")

        resp = client.get("/projection", params={"now": "2025-03-15T08:00:00Z"})
        assert resp.status_code == 200
        body = resp.json()

        assert body["anchor"] == "first_event"
        assert [p["at"] for p in body["curve"]] == [
            "2025-03-14T08:00:00+00:00",
            "2025-03-14T08:00:00+00:00",
            "2025-03-15T08:00:00+00:00",
        ]
        assert [p["deficit"] for p in body["curve"]] == pytest.approx([0.0, -1.0, 1.0])
        assert body["stats"]["current_deficit"] == pytest.approx(1.0)
        assert body["stats"]["hours_until_half_unit_owed"] == pytest.approx(-6.0)
        assert body["stats"]["half_unit_owed_at"] == "2025-03-15T02:00:00+00:00"
        assert body["display"] == {
            "time_zone": "UTC",
            "half_unit_owed_time": "02:00 AM",
            "full_unit_owed_time": "08:00 AM",
        }
        assert body["warning"] is None

    def test_no_events(self, client):
        body = client.get("/projection", params={"now": "2025-03-15T08:00:00Z"}).json()
        assert body["curve"] == []
        assert body["stats"]["current_deficit"] is None
        assert body["display"]["half_unit_owed_time"] is None

    def test_invalid_now(self, client):
        resp = client.get("/projection", params={"now": "not-a-time"})
        assert resp.status_code == 400

    def test_store_failure_gives_empty_projection_with_warning(self, client):
        app.dependency_overrides[get_store] = BrokenStore
        body = client.get("/projection", params={"now": "2025-03-15T08:00:00Z"}).json()
        assert body["curve"] == []
        assert "disk on fire" in body["warning"]


class TestUnconfiguredStore:
    @pytest.fixture
    def sheet_client_without_url(self, api_config):
        api_config.store_backend = "sheet"
        api_config.sheet_url = None
        app.dependency_overrides[get_app_config] = lambda: api_config
        yield TestClient(app)
        app.dependency_overrides.clear()

    @pytest.mark.parametrize("action", ["get", "ensureHeaders"])
    def test_get_actions_answer_with_error_envelope(self, sheet_client_without_url, action):
        resp = sheet_client_without_url.get("/exec", params={"action": action})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert "DT_SHEET_URL" in body["error"]

    def test_post_actions_answer_with_error_envelope(self, sheet_client_without_url):
        resp = sheet_client_without_url.post(
            "/exec", params={"action": "add", "date": "2025-03-14T08:00:00Z", "floatValue": "1"}
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is False

    def test_projection_degrades_to_empty_timeline(self, sheet_client_without_url):
        resp = sheet_client_without_url.get("/projection", params={"now": "2025-03-15T08:00:00Z"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["curve"] == []
        assert body["stats"]["current_deficit"] is None
        assert "DT_SHEET_URL" in body["warning"]

    def test_rate_endpoints_still_work(self, sheet_client_without_url):
        assert sheet_client_without_url.get("/rate").json()["rate"] == 0.125
