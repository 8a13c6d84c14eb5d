from __future__ import annotations
from typing import Any

from pydantic import BaseModel, Field


class CreateTasksRequest(BaseModel):
    providers: list[str] | None = None
    # scheduled triggers skip while another execution is running
    respect_running: bool = False


class CreateTasksResponse(BaseModel):
    success: bool
    execution_id: str | None
    batch_id: str | None
    tasks_created: int
    skipped: bool = False
    reason: str = ""


class RetryFailedRequest(BaseModel):
    execution_id: str | None = None
    provider: str | None = None
    limit: int = Field(default=100, ge=1, le=1000)


class RetryFailedResponse(BaseModel):
    success: bool
    retried: int
    task_ids: list[str]
    jobs_retried: int = 0
    job_ids: list[str] = Field(default_factory=list)


class ManualTaskRequest(BaseModel):
    provider: str
    company: str
    params: dict[str, Any] = Field(default_factory=dict)
    task_id: str | None = None
