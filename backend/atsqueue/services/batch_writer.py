from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500

ProgressFn = Callable[[int, int, int, int], None]


@dataclass
class BatchWriteResult:
    written: int = 0
    failed: int = 0
    chunks: int = 0
    failed_chunks: int = 0


def write_batch(
    items: Sequence[Any],
    write_fn: Callable[[Sequence[Any]], Any],
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: Optional[ProgressFn] = None,
) -> BatchWriteResult:
    """Commit `items` in chunks of `batch_size`, one `write_fn` call per chunk.

    `write_fn` must commit its chunk atomically. A chunk that raises counts
    toward `failed`; the remaining chunks are still written.

    `on_progress(chunk_index, total_chunks, written, failed)` fires after
    every chunk.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    result = BatchWriteResult()
    total_chunks = math.ceil(len(items) / batch_size)

    for index in range(total_chunks):
        chunk = items[index * batch_size : (index + 1) * batch_size]
        try:
            write_fn(chunk)
            result.written += len(chunk)
        except Exception as exc:  # noqa: BLE001
            result.failed += len(chunk)
            result.failed_chunks += 1
            logger.warning(
                "batch chunk failed",
                extra={"chunk": index + 1, "chunks": total_chunks, "size": len(chunk), "error": str(exc)},
            )
        result.chunks += 1
        if on_progress:
            on_progress(index + 1, total_chunks, result.written, result.failed)

    return result
