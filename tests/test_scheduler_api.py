import pytest

import config
from errors import StoreUnavailableError
from reports.generator import ReportRunSummary
from scheduler_api import app as app_module
from sync.writer import SyncRunSummary

SECRET = "s3cret-cron"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", SECRET)
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer wrong"},
    {"Authorization": SECRET},
    {"Authorization": f"bearer {SECRET}"},
])
def test_requests_without_the_secret_are_rejected(client, monkeypatch, headers):
    monkeypatch.setattr(app_module, "sync_all", lambda: pytest.fail("job must not run"))

    response = client.post("/api/cron/sync-classroom", headers=headers)

    assert response.status_code == 401
    assert response.get_json() == {"ok": False, "error": "Unauthorized"}


def test_unset_secret_rejects_everything(client, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "")
    response = client.post("/api/cron/sync-classroom", headers={"Authorization": "Bearer "})
    assert response.status_code == 401


def test_sync_route_returns_the_run_summary(client, monkeypatch):
    summary = SyncRunSummary(
        synced_count=2,
        total_count=3,
        errors=[{"user_id": "t2", "error": "Refresh rejected", "kind": "AuthError"}],
    )
    monkeypatch.setattr(app_module, "sync_all", lambda: summary)

    response = client.post("/api/cron/sync-classroom", headers=AUTH)

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["data"]["synced"] == 2
    assert body["data"]["total"] == 3
    assert body["data"]["errors"][0]["user_id"] == "t2"


def test_unreachable_store_is_a_server_error(client, monkeypatch):
    def boom():
        raise StoreUnavailableError("Local database unreachable")

    monkeypatch.setattr(app_module, "sync_all", boom)

    response = client.post("/api/cron/sync-classroom", headers=AUTH)

    assert response.status_code == 500
    assert response.get_json()["ok"] is False


def test_reports_route_passes_window_days(client, monkeypatch):
    seen = {}

    def fake_generate(window_days):
        seen["window_days"] = window_days
        return ReportRunSummary(generated_count=4, skipped_count=1)

    monkeypatch.setattr(app_module, "generate_all", fake_generate)

    response = client.post("/api/cron/send-reports", headers=AUTH, json={"window_days": 14})

    assert response.status_code == 200
    assert seen == {"window_days": 14}
    assert response.get_json()["data"]["generated"] == 4


def test_reports_route_defaults_window(client, monkeypatch):
    seen = {}

    def fake_generate(window_days):
        seen["window_days"] = window_days
        return ReportRunSummary()

    monkeypatch.setattr(app_module, "generate_all", fake_generate)

    response = client.post("/api/cron/send-reports", headers=AUTH)

    assert response.status_code == 200
    assert seen["window_days"] == config.REPORT_WINDOW_DAYS


@pytest.mark.parametrize("window_days", [0, -3, 91])
def test_reports_route_rejects_bad_window(client, monkeypatch, window_days):
    monkeypatch.setattr(app_module, "generate_all", lambda w: pytest.fail("job must not run"))

    response = client.post("/api/cron/send-reports", headers=AUTH, json={"window_days": window_days})

    assert response.status_code == 400


def test_sync_log_lists_recent_runs(client, temp_db):
    from database import db

    db.log_sync_run("google_classroom_cron", 2, 1, 5, 0, 1, "t2: AuthError")

    response = client.get("/api/cron/sync-log?limit=5", headers=AUTH)

    assert response.status_code == 200
    rows = response.get_json()["data"]
    assert len(rows) == 1
    assert rows[0]["accounts_synced"] == 1
