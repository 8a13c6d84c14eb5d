from __future__ import annotations
import json
import logging

from atsqueue.core.logging import JsonFormatter


def test_json_formatter_merges_extra_fields():
    record = logging.LogRecord("atsqueue.workers.fetch_worker", logging.INFO, __file__, 1, "fetch task started", (), None)
    record.task_id = "t1"
    record.provider = "lever"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "fetch task started"
    assert payload["level"] == "INFO"
    assert payload["component"] == "workers"
    assert payload["task_id"] == "t1"
    assert payload["provider"] == "lever"
