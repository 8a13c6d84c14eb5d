from __future__ import annotations
import pytest
from fastapi.testclient import TestClient

from atsqueue.api.deps import get_queue_system
from atsqueue.core.config import settings
from atsqueue.db.database import get_db
from atsqueue.main import app
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.job import Job
from atsqueue.models.source import Source
from atsqueue.models.status import TaskStatus
from atsqueue.services.queue_system import QueueSystem

PREFIX = settings.api_prefix


class StaticExtractor:
    def extract(self, text):
        return ["Python"]


@pytest.fixture
def system(session_factory):
    return QueueSystem(session_factory, extractor=StaticExtractor())


@pytest.fixture
def client(session_factory, system):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_queue_system] = lambda: system
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    resp = client.post(
        f"{PREFIX}/auth/login", json={"username": settings.auth_username, "password": settings.auth_password}
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def test_login_rejects_bad_password(client):
    resp = client.post(f"{PREFIX}/auth/login", json={"username": settings.auth_username, "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_queue_endpoints_require_auth(client):
    assert client.get(f"{PREFIX}/queue/queue-status").status_code == 401


def test_create_tasks_then_queue_status(client, auth_headers, system):
    system.store.insert_all(
        [
            Source(provider="greenhouse", company="stripe", params={}, enabled=True),
            Source(provider="lever", company="netflix", params={}, enabled=True),
            Source(provider="ashby", company="linear", params={}, enabled=False),
        ]
    )

    resp = client.post(f"{PREFIX}/queue/create-tasks", json={}, headers=auth_headers)
    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["tasks_created"] == 2

    status = client.get(f"{PREFIX}/queue/queue-status", headers=auth_headers).json()
    assert status["success"] is True
    assert status["latest_execution"]["execution_id"] == body["execution_id"]
    assert status["tasks"]["pending"] == 2
    assert status["queues"]["fetch"]["queued"] == 2

    skipped = client.post(
        f"{PREFIX}/queue/create-tasks", json={"respect_running": True}, headers=auth_headers
    ).json()
    assert skipped["skipped"] is True
    assert skipped["tasks_created"] == 0


def test_create_tasks_with_provider_filter(client, auth_headers, system):
    system.store.insert_all(
        [
            Source(provider="greenhouse", company="stripe", params={}, enabled=True),
            Source(provider="lever", company="netflix", params={}, enabled=True),
        ]
    )
    body = client.post(f"{PREFIX}/queue/create-tasks", json={"providers": ["lever"]}, headers=auth_headers).json()
    assert body["tasks_created"] == 1


class OneJobAdapter:
    def fetch(self, company, **params):
        from atsqueue.crawlers.base import NormalizedJob

        return [NormalizedJob(provider="greenhouse", external_id="77", title="Engineer", company=company, description="Python")]


def test_process_task_manual_runs_inline(client, auth_headers, system):
    system.adapter_lookup = lambda provider: OneJobAdapter()

    resp = client.post(
        f"{PREFIX}/queue/process-task-manual",
        json={"provider": "greenhouse", "company": "stripe"},
        headers=auth_headers,
    )
    body = resp.json()

    assert resp.status_code == 200
    assert body["success"] is True
    assert body["jobs_fetched"] == 1
    execution = client.get(f"{PREFIX}/queue/executions/{body['execution_id']}", headers=auth_headers).json()
    assert execution["execution"]["status"] == "completed"

    jobs = client.get(f"{PREFIX}/jobs", params={"provider": "greenhouse"}, headers=auth_headers).json()
    assert [j["id"] for j in jobs] == ["greenhouse_77"]
    assert client.get(f"{PREFIX}/jobs/greenhouse_77", headers=auth_headers).json()["title"] == "Engineer"


def test_process_task_manual_rejects_existing_task_id(client, auth_headers, system):
    system.adapter_lookup = lambda provider: OneJobAdapter()
    body = {"provider": "greenhouse", "company": "stripe", "task_id": "manual_task_1"}

    first = client.post(f"{PREFIX}/queue/process-task-manual", json=body, headers=auth_headers)
    assert first.status_code == 200

    again = client.post(f"{PREFIX}/queue/process-task-manual", json=body, headers=auth_headers)
    assert again.status_code == 409
    assert again.json() == {"success": False, "error": "task manual_task_1 already exists"}
    task = system.store.get(FetchTask, "manual_task_1")
    assert task.status is TaskStatus.COMPLETED
    assert task.execution_id == first.json()["execution_id"]


def test_retry_failed_tasks_endpoint_with_nothing_failed(client, auth_headers):
    body = client.post(f"{PREFIX}/queue/retry-failed-tasks", json={}, headers=auth_headers).json()
    assert body == {"success": True, "retried": 0, "task_ids": [], "jobs_retried": 0, "job_ids": []}


def test_unknown_ids_return_404(client, auth_headers):
    resp = client.get(f"{PREFIX}/queue/executions/missing", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "execution not found"}
    assert client.get(f"{PREFIX}/jobs/missing", headers=auth_headers).status_code == 404


def test_sources_can_be_toggled(client, auth_headers, system):
    system.store.insert_all([Source(provider="lever", company="plaid", params={}, enabled=True)])
    [source] = client.get(f"{PREFIX}/sources", headers=auth_headers).json()

    patched = client.patch(f"{PREFIX}/sources/{source['id']}", json={"enabled": False}, headers=auth_headers).json()

    assert patched["enabled"] is False
    assert system.store.query(Source)[0].enabled is False


def test_metrics_and_health(client):
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "atsqueue_" in metrics.text
    assert client.get("/health").json()["success"] is True
