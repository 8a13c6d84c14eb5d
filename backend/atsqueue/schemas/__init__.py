from __future__ import annotations
from atsqueue.schemas.auth import LoginRequest, TokenResponse
from atsqueue.schemas.job import JobOut
from atsqueue.schemas.queue import (
    CreateTasksRequest,
    CreateTasksResponse,
    ManualTaskRequest,
    RetryFailedRequest,
    RetryFailedResponse,
)
from atsqueue.schemas.source import SourceOut, SourcePatch

__all__ = [
    "LoginRequest",
    "TokenResponse",
    "JobOut",
    "CreateTasksRequest",
    "CreateTasksResponse",
    "ManualTaskRequest",
    "RetryFailedRequest",
    "RetryFailedResponse",
    "SourceOut",
    "SourcePatch",
]
