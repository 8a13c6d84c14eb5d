from __future__ import annotations


class AtsQueueError(Exception):
    """Base class for errors raised by the queue core."""


class InvalidTransitionError(AtsQueueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"illegal task transition {current} -> {target}")
        self.current = current
        self.target = target


class UnknownProviderError(AtsQueueError):
    def __init__(self, provider: str):
        super().__init__(f"missing adapter for provider={provider}")
        self.provider = provider


class AdapterError(AtsQueueError):
    """Unrecoverable HTTP or parse failure inside a provider adapter."""


class BatchSizeError(AtsQueueError):
    pass


class ExtractionError(AtsQueueError):
    pass


class TaskExistsError(AtsQueueError):
    def __init__(self, task_id: str):
        super().__init__(f"task {task_id} already exists")
        self.task_id = task_id
