from __future__ import annotations
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from atsqueue.api.deps import get_queue_system, require_user
from atsqueue.core.errors import TaskExistsError
from atsqueue.schemas.queue import (
    CreateTasksRequest,
    CreateTasksResponse,
    ManualTaskRequest,
    RetryFailedRequest,
    RetryFailedResponse,
)
from atsqueue.services.queue_system import QueueSystem
from atsqueue.services.source_registry import enabled_sources

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/create-tasks", response_model=CreateTasksResponse)
def create_tasks(
    body: CreateTasksRequest | None = None,
    _: str = Depends(require_user),
    system: QueueSystem = Depends(get_queue_system),
):
    body = body or CreateTasksRequest()
    sources = enabled_sources(system.store, body.providers)
    if body.respect_running:
        result = system.task_creator.run_scheduled(sources, trigger="api")
    else:
        result = system.task_creator.create_all_tasks(sources, trigger="api")
    return CreateTasksResponse(
        success=True,
        execution_id=result.execution_id,
        batch_id=result.batch_id,
        tasks_created=result.tasks_created,
        skipped=result.skipped,
        reason=result.reason,
    )


@router.get("/queue-status")
def queue_status(_: str = Depends(require_user), system: QueueSystem = Depends(get_queue_system)):
    return {"success": True, **system.metrics.queue_status()}


@router.post("/retry-failed-tasks", response_model=RetryFailedResponse)
def retry_failed_tasks(
    body: RetryFailedRequest | None = None,
    _: str = Depends(require_user),
    system: QueueSystem = Depends(get_queue_system),
):
    body = body or RetryFailedRequest()
    result = system.metrics.retry_failed_tasks(execution_id=body.execution_id, provider=body.provider, limit=body.limit)
    return RetryFailedResponse(success=True, **result)


@router.post("/process-task-manual")
def process_task_manual(
    body: ManualTaskRequest,
    _: str = Depends(require_user),
    system: QueueSystem = Depends(get_queue_system),
):
    try:
        return system.process_task_manual(body.provider, body.company, params=body.params, task_id=body.task_id)
    except TaskExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.get("/executions/{execution_id}")
def get_execution(execution_id: str, _: str = Depends(require_user), system: QueueSystem = Depends(get_queue_system)):
    data = system.metrics.get_execution_metrics(execution_id)
    if data is None:
        raise HTTPException(status_code=404, detail="execution not found")
    return {"success": True, "execution": data}


@router.get("/metrics/recent")
def recent_metrics(
    limit: int = Query(default=20, ge=1, le=200),
    _: str = Depends(require_user),
    system: QueueSystem = Depends(get_queue_system),
):
    return {"success": True, **system.metrics.get_recent_metrics(limit)}
