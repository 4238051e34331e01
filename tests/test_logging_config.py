"""Tests for the JSON log formatter and context logger."""

import json
import logging
import warnings

from catalog_pipeline.logging_config import CustomJsonFormatter, get_logger


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="catalog_pipeline.worker.tasks",
        level=logging.WARNING,
        pathname="tasks.py",
        lineno=42,
        msg="Batch failed",
        args=(),
        exc_info=None,
        func="run",
    )
    record.__dict__.update(extra)
    return record


def test_json_formatter_stamps_service_fields():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        payload = json.loads(formatter.format(_record(job_id=7)))

    assert payload["message"] == "Batch failed"
    assert payload["service"] == "catalog_pipeline"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "catalog_pipeline.worker.tasks"
    assert payload["source"] == "tasks.py:42"
    assert payload["function"] == "run"
    assert payload["job_id"] == 7
    assert payload["timestamp"].endswith("Z")


def test_context_logger_merges_extra(caplog):
    log = get_logger("catalog_pipeline.test", job_id=3)

    with caplog.at_level(logging.INFO, logger="catalog_pipeline.test"):
        log.info("started", extra={"stage": "fetch"})

    (record,) = caplog.records
    assert record.job_id == 3
    assert record.stage == "fetch"
