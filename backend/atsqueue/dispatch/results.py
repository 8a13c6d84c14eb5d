"""Explicit handler results.

A handler tells the dispatcher what to do next by returning one of these
instead of relying on whether an exception happened to escape.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Outcome:
    """Work is done (including domain no-ops). Acknowledge the message."""

    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Retryable:
    """Infra failure. Redeliver after backoff while attempts remain."""

    error: str


@dataclass(frozen=True)
class Terminal:
    """Failure that retrying cannot change. Dead-letter the message."""

    error: str


TaskResult = Union[Outcome, Retryable, Terminal]
