"""HTTP tests for the flag, experiment and evaluation endpoints."""
import inspect
from unittest.mock import MagicMock

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from flagkit.main import app
from flagkit.services.stats import StatsRecorder, get_stats_recorder

ADMIN_KEY = "api-test-admin-key"
BASE = "/platforms/web/environments/production"
HEADERS = {"x-api-key": ADMIN_KEY}

EXPERIMENT = {
    "experiment_key": "checkout-test",
    "name": "Checkout test",
    "variations": [
        {"key": "control", "name": "Control", "value": "old", "is_control": True},
        {"key": "variant_1", "name": "Variant 1", "value": "new"}
    ],
    "traffic_allocation": [
        {"variation_key": "control", "percentage": 50},
        {"variation_key": "variant_1", "percentage": 50}
    ],
    "targeting": {"force_include_users": ["vip"]}
}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["service"] == "flagkit"


def test_trace_id_is_echoed(client):
    response = client.get("/health", headers={"X-Trace-ID": "trace-123"})

    assert response.headers["X-Trace-ID"] == "trace-123"


def test_admin_routes_require_api_key(client):
    assert client.get(f"{BASE}/flags").status_code == 401
    assert client.get(f"{BASE}/flags", headers={"x-api-key": "wrong"}).status_code == 401


def test_flag_lifecycle(client, stats_redis):
    """Test create, evaluate, toggle, edit and delete through HTTP."""
    response = client.post(f"{BASE}/flags", headers=HEADERS, json={
        "flag_key": "dark-mode",
        "name": "Dark mode",
        "enabled": True,
        "targeting": {"countries": [{"country": "AE", "languages": ["ar"], "serve_value": "B"}]}
    })
    assert response.status_code == 201
    assert response.json()["version"] == 1

    response = client.get(f"{BASE}/flags/dark-mode/evaluate", params={
        "user_id": "u1", "country": "ae", "language": "AR"
    })
    assert response.status_code == 200
    decision = response.json()
    assert decision["value"] is False
    assert decision["source"] == "rule"
    stats_redis.pipeline.return_value.execute.assert_called()

    response = client.patch(f"{BASE}/flags/dark-mode/toggle", headers=HEADERS, json={"enabled": False})
    assert response.json()["enabled"] is False
    assert response.json()["version"] == 1

    response = client.put(f"{BASE}/flags/dark-mode", headers=HEADERS, json={"name": "Dark", "expected_version": 1})
    assert response.json()["version"] == 2

    response = client.put(f"{BASE}/flags/dark-mode", headers=HEADERS, json={"name": "Stale", "expected_version": 1})
    assert response.status_code == 409

    versions = client.get(f"{BASE}/flags/dark-mode/versions", headers=HEADERS).json()
    assert [v["version"] for v in versions] == [2, 1]

    response = client.delete(f"{BASE}/flags/dark-mode", headers=HEADERS)
    assert response.json()["deleted_versions"] == 2

    assert client.get(f"{BASE}/flags/dark-mode/evaluate").status_code == 404


def test_duplicate_flag_returns_409(client):
    body = {"flag_key": "dup", "name": "Dup"}
    client.post(f"{BASE}/flags", headers=HEADERS, json=body)

    response = client.post(f"{BASE}/flags", headers=HEADERS, json=body)

    assert response.status_code == 409
    assert "already exists" in response.json()["detail"]


def test_invalid_rollout_returns_400(client):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "roll", "name": "Roll"})

    response = client.patch(f"{BASE}/flags/roll/rollout", headers=HEADERS, json={
        "rollout_percentage_a": 70, "rollout_percentage_b": 70
    })

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_rollout_only_put_stays_on_version(client):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "roll", "name": "Roll"})

    response = client.put(f"{BASE}/flags/roll", headers=HEADERS, json={
        "rollout_enabled": True, "rollout_percentage_a": 30
    })

    assert response.status_code == 200
    assert response.json()["version"] == 1
    assert response.json()["revision"] == 2
    assert response.json()["rollout_percentage_b"] == 70
    assert len(client.get(f"{BASE}/flags/roll/versions", headers=HEADERS).json()) == 1


def test_stale_expected_revision_returns_409(client):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "kill", "name": "Kill"})
    client.patch(f"{BASE}/flags/kill/toggle", headers=HEADERS, json={"enabled": True})

    response = client.patch(f"{BASE}/flags/kill/rollout", headers=HEADERS, json={
        "rollout_enabled": True, "expected_revision": 1
    })

    assert response.status_code == 409
    flag = client.get(f"{BASE}/flags/kill", headers=HEADERS).json()
    assert flag["enabled"] is True
    assert flag["rollout_enabled"] is False


def test_database_routes_do_not_run_on_event_loop():
    """Test that routes and the auth dependency using blocking sessions are sync."""
    from flagkit.middleware.auth import require_api_key

    assert not inspect.iscoroutinefunction(require_api_key)
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith(("/platforms", "/setup", "/health")):
            assert not inspect.iscoroutinefunction(route.endpoint), route.path


def test_evaluate_rejects_bad_country(client):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "geo", "name": "Geo"})

    response = client.get(f"{BASE}/flags/geo/evaluate", params={"country": "USA"})

    assert response.status_code == 422


def test_experiment_lifecycle_and_assignment(client):
    response = client.post(f"{BASE}/experiments", headers=HEADERS, json=EXPERIMENT)
    assert response.status_code == 201
    assert response.json()["status"] == "draft"

    draft = client.get(f"{BASE}/experiments/checkout-test/assign", params={"user_id": "vip"}).json()
    assert draft["eligible"] is False

    response = client.post(f"{BASE}/experiments/checkout-test/complete", headers=HEADERS)
    assert response.status_code == 409

    response = client.post(f"{BASE}/experiments/checkout-test/start", headers=HEADERS)
    assert response.json()["status"] == "running"

    assigned = client.get(f"{BASE}/experiments/checkout-test/assign", params={"user_id": "vip"}).json()
    assert assigned["eligible"] is True
    assert assigned["variation_key"] == "control"
    assert assigned["record_exposure"] is True

    response = client.patch(f"{BASE}/experiments/checkout-test/traffic", headers=HEADERS, json={
        "traffic_allocation": [
            {"variation_key": "control", "percentage": 50},
            {"variation_key": "variant_1", "percentage": 40}
        ]
    })
    assert response.status_code == 400

    assert client.delete(f"{BASE}/experiments/checkout-test", headers=HEADERS).status_code == 409

    response = client.post(
        f"{BASE}/experiments/checkout-test/complete",
        headers=HEADERS,
        json={"winner": "variant_1"}
    )
    assert response.json()["winner"] == "variant_1"


def test_unknown_action_is_rejected(client):
    client.post(f"{BASE}/experiments", headers=HEADERS, json=EXPERIMENT)

    response = client.post(f"{BASE}/experiments/checkout-test/restart", headers=HEADERS)

    assert response.status_code == 422


def test_batch_evaluation(client):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "one", "name": "One", "enabled": True})
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "two", "name": "Two"})
    client.post(f"{BASE}/experiments", headers=HEADERS, json=EXPERIMENT)
    client.post(f"{BASE}/experiments/checkout-test/start", headers=HEADERS)

    response = client.post(f"{BASE}/evaluate", json={"user_id": "vip", "country": "US"})

    assert response.status_code == 200
    body = response.json()
    assert set(body["flags"]) == {"one", "two"}
    assert body["flags"]["two"]["source"] == "disabled"
    assert body["experiments"]["checkout-test"]["variation_key"] == "control"


def test_flag_stats(client, stats_redis):
    client.post(f"{BASE}/flags", headers=HEADERS, json={"flag_key": "counted", "name": "Counted"})
    stats_redis.hgetall.return_value = {b"total": b"4"}

    response = client.get(f"{BASE}/flags/counted/stats", headers=HEADERS)

    assert response.json()["counts"] == {"total": 4}


def test_setup_is_idempotent(client):
    """Test that init-db does nothing once an admin key exists."""
    response = client.post("/setup/init-db")

    assert response.status_code == 200
    assert response.json()["status"] == "already_initialized"


def test_experiment_versions(client):
    client.post(f"{BASE}/experiments", headers=HEADERS, json=EXPERIMENT)
    client.put(f"{BASE}/experiments/checkout-test", headers=HEADERS, json={"name": "Renamed"})

    first = client.get(f"{BASE}/experiments/checkout-test/versions/1", headers=HEADERS).json()
    history = client.get(f"{BASE}/experiments/checkout-test/versions", headers=HEADERS).json()

    assert first["name"] == "Checkout test"
    assert first["is_active"] is False
    assert [e["version"] for e in history] == [2, 1]
    assert client.get(f"{BASE}/experiments/checkout-test/versions/9", headers=HEADERS).status_code == 404


@pytest.fixture
def stats_redis():
    """Redis client double behind the stats recorder."""
    redis_client = MagicMock()
    app.dependency_overrides[get_stats_recorder] = lambda: StatsRecorder(redis_client)
    yield redis_client
    app.dependency_overrides.pop(get_stats_recorder, None)


@pytest.fixture
def client():
    """Test client over a fresh database holding one admin key."""
    from flagkit.database import SessionLocal, engine, Base
    from flagkit.middleware.auth import create_api_key

    with TestClient(app) as test_client:
        session = SessionLocal()
        create_api_key(session, ADMIN_KEY)
        session.close()

        yield test_client

    Base.metadata.drop_all(bind=engine)
