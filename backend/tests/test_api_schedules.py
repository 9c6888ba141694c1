"""Tests for the schedule REST endpoints."""

from datetime import timedelta

from tests.conftest import FakeSource, make_connection, make_settings, seed_application
from connwatch.services.scheduler.executor import ScheduleExecutor


def _create(client, application_id, cron="0 * * * *", enabled=True):
    return client.post(
        "/api/schedules/",
        json={"application_id": application_id, "cron_expression": cron, "is_enabled": enabled},
    )


def test_list_schedules_empty(client):
    response = client.get("/api/schedules/")
    assert response.status_code == 200
    assert response.json() == []


def test_upsert_and_get_by_application(client):
    app_id = seed_application("Billing")
    response = _create(client, app_id)
    assert response.status_code == 200
    data = response.json()
    assert data["application_id"] == app_id
    assert data["application_name"] == "Billing"
    assert data["cron_expression"] == "0 * * * *"
    assert data["next_run_time"] is not None

    response = client.get(f"/api/schedules/application/{app_id}")
    assert response.status_code == 200
    assert response.json()["id"] == data["id"]


def test_upsert_replaces_existing_schedule(client):
    app_id = seed_application()
    first = _create(client, app_id).json()
    second = _create(client, app_id, cron="*/5 * * * *").json()
    assert second["id"] == first["id"]
    assert second["cron_expression"] == "*/5 * * * *"
    assert len(client.get("/api/schedules/").json()) == 1


def test_upsert_invalid_cron_is_field_error(client):
    app_id = seed_application()
    response = _create(client, app_id, cron="60 * * * *")
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["field"] == "cron_expression"
    assert client.get(f"/api/schedules/application/{app_id}").status_code == 404


def test_upsert_invalid_cron_keeps_existing(client):
    app_id = seed_application()
    original = _create(client, app_id).json()
    assert _create(client, app_id, cron="* * *").status_code == 422

    current = client.get(f"/api/schedules/application/{app_id}").json()
    assert current["cron_expression"] == original["cron_expression"]
    assert current["next_run_time"] == original["next_run_time"]


def test_never_matching_cron_is_rejected(client):
    app_id = seed_application()
    response = _create(client, app_id, cron="0 0 30 2 *")
    assert response.status_code == 422
    assert response.json()["detail"]["field"] == "cron_expression"
    assert client.get(f"/api/schedules/application/{app_id}").status_code == 404

    response = client.post("/api/schedules/validate-cron", json={"expression": "0 0 31 4 *"})
    assert response.status_code == 200
    assert response.json()["is_valid"] is False


def test_upsert_unknown_application(client):
    assert _create(client, 999).status_code == 404


def test_upsert_missing_application_reference(client):
    response = client.post("/api/schedules/", json={"cron_expression": "0 * * * *"})
    assert response.status_code == 422


def test_list_scoped_to_caller(client):
    mine = seed_application("Mine", owner_id=1)
    theirs = seed_application("Theirs", owner_id=2)
    _create(client, mine)
    _create(client, theirs)

    response = client.get("/api/schedules/", headers={"X-User-Id": "2"})
    assert [s["application_name"] for s in response.json()] == ["Theirs"]
    assert len(client.get("/api/schedules/").json()) == 2


def test_get_schedule_not_found(client):
    assert client.get("/api/schedules/9999").status_code == 404
    assert client.get("/api/schedules/application/9999").status_code == 404


def test_update_schedule(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()

    response = client.put(
        f"/api/schedules/{schedule['id']}",
        json={"cron_expression": "30 2 * * *", "is_enabled": True},
    )
    assert response.status_code == 200
    assert response.json()["cron_expression"] == "30 2 * * *"

    bad = client.put(f"/api/schedules/{schedule['id']}", json={"cron_expression": "0 25 * * *"})
    assert bad.status_code == 422
    missing = client.put("/api/schedules/9999", json={"cron_expression": "0 * * * *"})
    assert missing.status_code == 404


def test_toggle_schedule(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()

    response = client.patch(f"/api/schedules/{schedule['id']}/toggle", json={"is_enabled": False})
    assert response.status_code == 200
    assert response.json()["is_enabled"] is False
    assert response.json()["next_run_time"] is None

    response = client.patch(f"/api/schedules/{schedule['id']}/toggle", json={"is_enabled": True})
    assert response.json()["next_run_time"] is not None

    assert client.patch("/api/schedules/9999/toggle", json={"is_enabled": True}).status_code == 404


def test_delete_schedule(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()

    response = client.delete(f"/api/schedules/{schedule['id']}")
    assert response.status_code == 200
    assert response.json()["status"] == "deleted"
    assert client.get(f"/api/schedules/{schedule['id']}").status_code == 404
    assert client.delete(f"/api/schedules/{schedule['id']}").status_code == 404


def test_validate_cron(client):
    response = client.post("/api/schedules/validate-cron", json={"expression": "30 7 * * *"})
    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is True
    assert data["description"] == "Daily at 7:30"
    assert data["next_run_time"] is not None

    response = client.post("/api/schedules/validate-cron", json={"expression": "60 * * * *"})
    assert response.status_code == 200
    assert response.json()["is_valid"] is False
    assert response.json()["error_message"]

    # Nothing was saved
    assert client.get("/api/schedules/").json() == []


def test_templates_are_valid(client):
    response = client.get("/api/schedules/templates")
    assert response.status_code == 200
    for template in response.json():
        check = client.post("/api/schedules/validate-cron", json={"expression": template["cron_expression"]})
        assert check.json()["is_valid"] is True


def test_run_now_with_database_source(client):
    """Connections without a host cannot be tested and count as failures."""
    app_id = seed_application(connections=[
        {"name": "orders-db", "connection_type": "postgresql"},
        {"name": "retired-db", "connection_type": "postgresql", "is_active": False},
    ])
    schedule = _create(client, app_id).json()

    response = client.post(f"/api/schedules/{schedule['id']}/run-now")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "failed"
    assert data["trigger"] == "manual"
    assert data["total_connections"] == 1
    assert data["test_results"][0]["connection_name"] == "orders-db"
    assert data["test_results"][0]["message"] == "Test failed: Connection has no host configured"

    saved = client.get(f"/api/schedules/{schedule['id']}").json()
    assert saved["last_run_status"] == "failed"
    assert saved["last_run_message"] == "Manual test: 0 successful, 1 failed out of 1 connections"


def test_run_now_breakdown_and_history(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()
    state = client.app.state
    state.schedule_executor = ScheduleExecutor(
        state.schedule_store,
        FakeSource({app_id: [make_connection(1, "a"), make_connection(2, "b", ok=False)]}),
        make_settings(),
    )

    response = client.post(f"/api/schedules/{schedule['id']}/run-now")
    data = response.json()
    assert data["status"] == "partial"
    assert data["success_count"] == 1
    assert data["failure_count"] == 1
    assert data["message"] == "Manual test: 1 successful, 1 failed out of 2 connections"
    assert [r["connection_name"] for r in data["test_results"]] == ["a", "b"]

    runs = client.get(f"/api/schedules/{schedule['id']}/runs").json()
    assert len(runs) == 1
    assert runs[0]["status"] == "partial"
    assert runs[0]["trigger"] == "manual"


def test_run_now_without_connections_is_skipped(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()
    data = client.post(f"/api/schedules/{schedule['id']}/run-now").json()
    assert data["status"] == "skipped"
    assert data["message"] == "No active database connections found"


def test_run_now_busy(client):
    app_id = seed_application()
    schedule = _create(client, app_id).json()
    store = client.app.state.schedule_store
    store.try_acquire_lease(schedule["id"], "other-instance", timedelta(minutes=10))

    response = client.post(f"/api/schedules/{schedule['id']}/run-now")
    assert response.status_code == 409


def test_run_now_not_found(client):
    assert client.post("/api/schedules/9999/run-now").status_code == 404
    assert client.get("/api/schedules/9999/runs").status_code == 404
