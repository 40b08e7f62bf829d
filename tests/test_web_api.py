"""Tests for the Flask admin and lottery API.

Flask handlers block on coroutines scheduled onto the main loop, so the
fixtures run that loop in a background thread the way run_flask.py does.
"""

import pytest

from config import Config
from conftest import ADMIN_PASSWORD, Seeder, build_scenario
from core.constants import AdminRole, GradeOrder
from database import close_db_pool, init_db_pool, run_migrations
from database.repositories import JobRepository, ResultRepository
from services.async_runner import run_coroutine_sync, start_background_loop, stop_background_loop
from services.cache import init_cache
from services.job_worker import LotteryWorker
from services.lottery_service import LotteryJobManager
from web import create_app


def make_config(tmp_path, database_path):
    return Config(
        environment="development",
        debug=False,
        web_host="127.0.0.1",
        web_port=0,
        secret_key="test-secret-key",
        database_path=database_path,
        log_folder=str(tmp_path / "logs"),
        db_pool_size=4,
        db_busy_timeout=5000,
        lottery_progress_batch=1,
        lottery_attempts=1,
        lottery_commit_timeout=10,
        lottery_commit_retries=2,
        report_cache_ttl=30,
    )


@pytest.fixture
def env(tmp_path):
    database_path = str(tmp_path / "web.sqlite")
    loop = start_background_loop()

    async def bootstrap():
        pool = await init_db_pool(database_path, pool_size=4, busy_timeout_ms=5000)
        await run_migrations(pool)
        seeder = Seeder()
        scenario = await build_scenario(seeder)
        scenario["viewer_id"] = await seeder.admin(
            scenario["school_id"], username="viewer", role=AdminRole.READ_ONLY
        )
        other_school = await seeder.school("Other High")
        await seeder.admin(other_school, username="outsider")
        return scenario

    scenario = run_coroutine_sync(bootstrap())
    init_cache(ttl=30)
    manager = LotteryJobManager(LotteryWorker(progress_batch=1, commit_retries=2, retry_delay=0.01))
    app = create_app(make_config(tmp_path, database_path), testing=True, manager=manager)

    yield app, manager, scenario

    run_coroutine_sync(manager.worker.stop())
    run_coroutine_sync(close_db_pool())
    stop_background_loop(loop)


@pytest.fixture
def client(env):
    app, _, _ = env
    return app.test_client()


def login(client, username="coordinator", password=ADMIN_PASSWORD):
    return client.post("/admin/login", json={"username": username, "password": password})


def run_lottery(client, env, **body):
    _, manager, scenario = env
    response = client.post(f"/api/lottery/events/{scenario['event_id']}/start", json=body)
    assert response.status_code == 202
    run_coroutine_sync(manager.worker.wait_idle())
    return response.get_json()["jobId"]


def test_requires_login(client, env):
    _, _, scenario = env

    response = client.post(f"/api/lottery/events/{scenario['event_id']}/start", json={})

    assert response.status_code == 401
    assert response.get_json()["error"] == "Authentication required"


def test_login_and_logout(client):
    rejected = login(client, password="wrong")
    assert rejected.status_code == 401
    assert rejected.get_json() == {"error": "Invalid admin credentials"}

    response = login(client, username="COORDINATOR")
    assert response.status_code == 200
    assert response.get_json()["role"] == "FULL"
    assert client.get("/admin/me").get_json()["username"] == "coordinator"

    assert client.post("/admin/logout").status_code == 200
    assert client.get("/admin/me").status_code == 401


def test_start_and_poll_status(client, env):
    login(client)

    job_id = run_lottery(client, env, seed=42, gradeOrder="descending")

    status = client.get(f"/api/lottery/status/{job_id}").get_json()
    assert status == {
        "jobId": job_id,
        "eventId": env[2]["event_id"],
        "status": "COMPLETED",
        "isRunning": False,
        "progress": 100,
        "seed": 42,
        "error": None,
    }

    latest = client.get(f"/api/lottery/events/{env[2]['event_id']}/latest").get_json()
    assert latest["job"]["id"] == job_id
    assert latest["job"]["grade_order"] == GradeOrder.DESCENDING.value


def test_start_while_running_conflicts(client, env):
    _, _, scenario = env
    login(client)
    running = run_coroutine_sync(
        JobRepository.create(scenario["event_id"], scenario["admin_id"], 1, GradeOrder.NONE)
    )

    response = client.post(f"/api/lottery/events/{scenario['event_id']}/start", json={})

    assert response.status_code == 409
    current = client.get(f"/api/lottery/events/{scenario['event_id']}/running").get_json()
    assert current["job"]["jobId"] == running


def test_read_only_admin_cannot_start(client, env):
    _, _, scenario = env
    login(client, username="viewer")

    response = client.post(f"/api/lottery/events/{scenario['event_id']}/start", json={})

    assert response.status_code == 403


def test_other_school_cannot_read_results(client, env):
    login(client)
    job_id = run_lottery(client, env, seed=1)
    client.post("/admin/logout")

    login(client, username="outsider")
    assert client.get(f"/api/lottery/jobs/{job_id}/statistics").status_code == 403
    assert client.get(f"/api/lottery/status/{job_id}").status_code == 403


@pytest.mark.parametrize("body", [
    {"gradeOrder": "SIDEWAYS"},
    {"seed": "abc"},
    {"seed": -5},
])
def test_start_rejects_bad_input(client, env, body):
    _, _, scenario = env
    login(client)

    response = client.post(f"/api/lottery/events/{scenario['event_id']}/start", json=body)

    assert response.status_code == 400


def test_reports(client, env):
    _, _, scenario = env
    login(client)
    job_id = run_lottery(client, env, seed=42)

    stats = client.get(f"/api/lottery/jobs/{job_id}/statistics").get_json()
    assert stats["placed"] == 4
    assert stats["no_choices"] == 1

    positions = client.get(f"/api/lottery/jobs/{job_id}/positions").get_json()["positions"]
    assert sorted(p["title"] for p in positions) == ["P1", "P2", "P3"]

    assert client.get(f"/api/lottery/jobs/{job_id}/unassigned").get_json()["students"] == []
    companies = client.get(f"/api/lottery/jobs/{job_id}/companies").get_json()["companies"]
    assert companies[0]["company_name"] == "Acme"

    jobs = client.get(f"/api/lottery/events/{scenario['event_id']}/jobs").get_json()["jobs"]
    assert [job["id"] for job in jobs] == [job_id]


def test_release_invalidates_cached_statistics(client, env):
    login(client)
    job_id = run_lottery(client, env, seed=42)
    assert client.get(f"/api/lottery/jobs/{job_id}/statistics").get_json()["placed"] == 4
    result_id = run_coroutine_sync(ResultRepository.list_for_job(job_id))[0].id

    assert client.delete(f"/api/lottery/results/{result_id}").status_code == 200
    assert client.delete(f"/api/lottery/results/{result_id}").status_code == 404

    stats = client.get(f"/api/lottery/jobs/{job_id}/statistics").get_json()
    assert stats["placed"] == 3
    assert stats["not_placed"] == 1


def test_claim(client, env):
    _, _, scenario = env
    students, positions = scenario["students"], scenario["positions"]
    login(client)
    job_id = run_lottery(client, env, seed=42)

    full = client.post(
        f"/api/lottery/jobs/{job_id}/claims",
        json={"studentId": students["E"], "positionId": positions["P2"]},
    )
    assert full.status_code == 409

    claimed = client.post(
        f"/api/lottery/jobs/{job_id}/claims",
        json={"studentId": students["E"], "positionId": positions["P3"]},
    )
    assert claimed.status_code == 201
    result = run_coroutine_sync(ResultRepository.get(claimed.get_json()["resultId"]))
    assert result.origin.value == "MANUAL_POST_HOC"

    missing_field = client.post(f"/api/lottery/jobs/{job_id}/claims", json={"studentId": students["E"]})
    assert missing_field.status_code == 400


def test_manual_assignment_and_prefill_endpoints(client, env):
    _, _, scenario = env
    login(client)
    student_id = scenario["students"]["A"]

    created = client.post(
        "/api/lottery/manual-assignments",
        json={"studentId": student_id, "positionId": scenario["positions"]["P3"]},
    )
    assert created.status_code == 201
    assert client.delete(f"/api/lottery/manual-assignments/{student_id}").status_code == 200
    assert client.delete(f"/api/lottery/manual-assignments/{student_id}").status_code == 404

    prefill = {
        "positionId": scenario["positions"]["P1"],
        "companyId": scenario["company_id"],
        "slots": 2,
        "percentage": 150,
    }
    assert client.post("/api/lottery/prefill", json=prefill).status_code == 400
    prefill["percentage"] = 50
    assert client.post("/api/lottery/prefill", json=prefill).status_code == 201
    removed = client.delete(f"/api/lottery/prefill/{scenario['company_id']}")
    assert removed.get_json() == {"success": True, "removed": 1}


def test_unknown_job_is_not_found(client, env):
    login(client)

    response = client.get("/api/lottery/status/999")

    assert response.status_code == 404
    assert "not found" in response.get_json()["error"]


def test_health_and_metrics(client, env):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.get_json()["status"] == "ok"
    assert health.get_json()["db_pool_size"] == 4

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert b"lottery_jobs_total" in metrics.data
