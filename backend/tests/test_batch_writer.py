from __future__ import annotations
import pytest

from atsqueue.services.batch_writer import write_batch


def test_write_batch_chunks_and_survives_failed_chunk():
    commits = []

    def write_fn(chunk):
        commits.append(len(chunk))
        if len(commits) == 2:
            raise RuntimeError("storage unavailable")

    progress = []
    result = write_batch(list(range(1200)), write_fn, batch_size=500, on_progress=lambda *args: progress.append(args))

    assert commits == [500, 500, 200]
    assert result.written == 700
    assert result.failed == 500
    assert result.chunks == 3
    assert result.failed_chunks == 1
    assert progress == [(1, 3, 500, 0), (2, 3, 500, 500), (3, 3, 700, 500)]


def test_write_batch_empty_input_makes_no_calls():
    calls = []
    result = write_batch([], calls.append, batch_size=10)
    assert calls == []
    assert result.written == 0 and result.failed == 0


def test_write_batch_rejects_non_positive_size():
    with pytest.raises(ValueError):
        write_batch([1], lambda chunk: None, batch_size=0)
