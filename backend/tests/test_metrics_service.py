from __future__ import annotations
from atsqueue.dispatch.dispatcher import Dispatcher
from atsqueue.models.batch_execution import BatchExecution, ExecutionError
from atsqueue.models.fetch_task import FetchTask
from atsqueue.models.job import Job
from atsqueue.models.status import EnrichmentStatus, ExecutionStatus, TaskStatus
from atsqueue.services.execution_tracker import ExecutionTracker
from atsqueue.services.metrics_service import MetricsService
from atsqueue.workers.enrichment_worker import EnrichmentWorker
from conftest import add_execution, add_task


def _failed_execution(store):
    add_execution(store, "exec_1", total=3)
    add_task(store, "t1", status=TaskStatus.FAILED, retry_count=2, provider="greenhouse", company="stripe")
    add_task(store, "t2", status=TaskStatus.FAILED, retry_count=2, provider="lever", company="netflix")
    add_task(store, "t3", status=TaskStatus.COMPLETED, provider="ashby", company="linear")
    store.increment(BatchExecution, "exec_1", completed_tasks=1, failed_tasks=2)
    store.upsert(BatchExecution, "exec_1", {"status": ExecutionStatus.PARTIAL})


def test_retry_failed_tasks_resets_and_enqueues_once(store, fetch_queue, enrichment_queue):
    _failed_execution(store)
    service = MetricsService(store, fetch_queue, enrichment_queue)

    result = service.retry_failed_tasks(execution_id="exec_1")

    assert result["retried"] == 2
    for task_id in ("t1", "t2"):
        task = store.get(FetchTask, task_id)
        assert task.status is TaskStatus.PENDING
        assert task.retry_count == 0
        assert task.error is None
    assert store.get(FetchTask, "t3").status is TaskStatus.COMPLETED

    payloads = fetch_queue.pending_payloads()
    assert sorted(p["task_id"] for p in payloads) == ["t1", "t2"]

    execution = store.get(BatchExecution, "exec_1")
    assert execution.status is ExecutionStatus.RUNNING
    assert execution.failed_tasks == 0
    assert execution.completed_tasks + execution.failed_tasks <= execution.total_tasks

    # nothing left to reset, nothing enqueued twice
    assert service.retry_failed_tasks(execution_id="exec_1")["retried"] == 0
    assert len(fetch_queue.pending_payloads()) == 2


def test_retry_failed_tasks_filters_by_provider(store, fetch_queue):
    _failed_execution(store)

    result = MetricsService(store, fetch_queue).retry_failed_tasks(provider="lever")

    assert result["task_ids"] == ["t2"]
    assert store.get(FetchTask, "t1").status is TaskStatus.FAILED
    assert store.get(BatchExecution, "exec_1").failed_tasks == 1


def test_queue_status_reports_latest_execution(store, fetch_queue, enrichment_queue):
    _failed_execution(store)
    fetch_queue.enqueue({"task_id": "t1", "execution_id": "exec_1"})

    status = MetricsService(store, fetch_queue, enrichment_queue).queue_status()

    assert status["latest_execution"]["execution_id"] == "exec_1"
    assert status["tasks"]["failed"] == 2
    assert status["tasks"]["completed"] == 1
    assert status["tasks"]["pending"] == 0
    assert status["queues"]["fetch"]["queued"] == 1
    assert status["queues"]["enrichment"]["queued"] == 0


def test_execution_metrics_include_errors(store, fetch_queue):
    add_execution(store, "exec_2", total=1)
    add_task(store, "t9", execution_id="exec_2", provider="lever", status=TaskStatus.PROCESSING)
    tracker = ExecutionTracker(store, errors_limit=1)
    values = {"status": TaskStatus.FAILED, "error": "HTTP 404"}
    assert tracker.fail_task("t9", values, "exec_2", "lever", "acme", "HTTP 404")

    # a second settle of the same task loses the conditional write and counts nothing
    assert not tracker.fail_task("t9", values, "exec_2", "lever", "acme", "HTTP 404")
    assert store.get(BatchExecution, "exec_2").failed_tasks == 1

    data = MetricsService(store, fetch_queue).get_execution_metrics("exec_2")

    assert data["status"] == "failed"
    assert data["errors"][0]["error"] == "HTTP 404"
    assert MetricsService(store, fetch_queue).get_execution_metrics("nope") is None


def test_error_list_is_bounded(store):
    add_execution(store, "exec_3", total=10)
    tracker = ExecutionTracker(store, errors_limit=2)
    for i in range(5):
        tracker.append_error("exec_3", "lever", f"c{i}", "boom")

    assert store.count(ExecutionError, ExecutionError.execution_id == "exec_3") == 2


def test_retry_failed_tasks_requeues_failed_enrichments(store, fetch_queue, enrichment_queue):
    store.upsert(
        Job,
        "greenhouse_1",
        {
            "provider": "greenhouse",
            "title": "Data Engineer",
            "description": "Spark and Airflow",
            "enrichment_status": EnrichmentStatus.FAILED,
            "enrichment_error": "llm timeout",
            "last_execution_id": "exec_1",
        },
    )
    store.upsert(
        Job,
        "greenhouse_2",
        {"provider": "greenhouse", "enrichment_status": EnrichmentStatus.FAILED, "last_execution_id": "exec_other"},
    )
    store.upsert(
        Job,
        "greenhouse_3",
        {"provider": "greenhouse", "enrichment_status": EnrichmentStatus.COMPLETED, "last_execution_id": "exec_1"},
    )
    service = MetricsService(store, fetch_queue, enrichment_queue)

    result = service.retry_failed_tasks(execution_id="exec_1")

    assert result["retried"] == 0
    assert result["jobs_retried"] == 1
    assert result["job_ids"] == ["greenhouse_1"]
    job = store.get(Job, "greenhouse_1")
    assert job.enrichment_status is EnrichmentStatus.PENDING
    assert job.enrichment_error is None
    assert store.get(Job, "greenhouse_2").enrichment_status is EnrichmentStatus.FAILED
    assert enrichment_queue.pending_payloads() == [{"job_id": "greenhouse_1", "execution_id": "exec_1"}]

    assert service.retry_failed_tasks(execution_id="exec_1")["jobs_retried"] == 0
    assert len(enrichment_queue.pending_payloads()) == 1


def test_retried_enrichment_completes(store, fetch_queue, enrichment_queue):
    store.upsert(
        Job,
        "lever_7",
        {"provider": "lever", "title": "SRE", "description": "Terraform", "enrichment_status": EnrichmentStatus.FAILED},
    )
    MetricsService(store, fetch_queue, enrichment_queue).retry_failed_tasks()

    class Extractor:
        def extract(self, text):
            return ["Terraform"]

    Dispatcher(enrichment_queue, EnrichmentWorker(store, Extractor())).drain()

    job = store.get(Job, "lever_7")
    assert job.enrichment_status is EnrichmentStatus.COMPLETED
    assert job.skills == ["Terraform"]
