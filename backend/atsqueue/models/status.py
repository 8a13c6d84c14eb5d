from __future__ import annotations
import enum

from atsqueue.core.errors import InvalidTransitionError


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.RETRYING, TaskStatus.FAILED}),
    TaskStatus.RETRYING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in _TRANSITIONS[current]


def transition(current: TaskStatus, target: TaskStatus) -> TaskStatus:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target


def reset_for_retry(current: TaskStatus) -> TaskStatus:
    """Operator reset of a failed task. Not part of the worker state machine."""
    if current is not TaskStatus.FAILED:
        raise InvalidTransitionError(current.value, TaskStatus.PENDING.value)
    return TaskStatus.PENDING


class ExecutionStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


def final_execution_status(total: int, completed: int, failed: int) -> ExecutionStatus:
    if completed + failed < total:
        return ExecutionStatus.RUNNING
    if failed == 0:
        return ExecutionStatus.COMPLETED
    if completed == 0:
        return ExecutionStatus.FAILED
    return ExecutionStatus.PARTIAL


class EnrichmentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageStatus(str, enum.Enum):
    QUEUED = "queued"
    INFLIGHT = "inflight"
    DONE = "done"
    DEAD = "dead"
