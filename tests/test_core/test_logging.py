import json
import logging

import pytest

from admin_sync.core import logging as app_logging
from admin_sync.core.logging import ContextFilter, JsonFormatter, _redact, set_job, set_request_id, set_run_id
from admin_sync.core.observability import log_step


def _record(msg="hello", extra=None, exc_info=None):
    record = logging.LogRecord("admin_sync.test", logging.INFO, __file__, 1, msg, (), exc_info)
    if extra is not None:
        record.extra = extra
    return record


def test_redact_masks_secret_keys_recursively():
    data = {
        "headers": {"x-admin-sync-secret": "s3cret", "Authorization": "Bearer t", "content-type": "application/json"},
        "items": [{"password": "p"}, {"name": "ok"}],
    }

    redacted = _redact(data)

    assert redacted["headers"]["x-admin-sync-secret"] == "***"
    assert redacted["headers"]["Authorization"] == "***"
    assert redacted["headers"]["content-type"] == "application/json"
    assert redacted["items"] == [{"password": "***"}, {"name": "ok"}]


def test_redact_truncates_long_strings():
    value = "x" * (app_logging.LOG_BODY_MAX + 10)

    assert _redact(value).endswith("...(+10 chars)")


def test_json_formatter_includes_context_and_extra():
    set_run_id("run-1")
    set_request_id("req-1")
    set_job("outbox_flush")
    try:
        record = _record("Outbox batch done", extra={"processed": 2, "secret": "s3cret"})
        ContextFilter().filter(record)

        line = json.loads(JsonFormatter().format(record))
    finally:
        set_request_id(None)
        set_job(None)

    assert line["message"] == "Outbox batch done"
    assert line["service"] == "admin-sync"
    assert line["run_id"] == "run-1"
    assert line["request_id"] == "req-1"
    assert line["job"] == "outbox_flush"
    assert line["processed"] == 2
    assert line["secret"] == "***"


def test_json_formatter_serializes_non_json_values():
    from datetime import datetime

    record = _record(extra={"next_retry_at": datetime(2026, 3, 2, 12, 0)})

    line = json.loads(JsonFormatter().format(record))

    assert line["next_retry_at"] == "2026-03-02 12:00:00"


def test_set_run_id_generates_uuid_when_missing():
    rid = set_run_id()

    assert len(rid) == 36
    assert app_logging.run_id_var.get() == rid


@pytest.mark.asyncio
async def test_log_step_logs_exit_for_coroutines(caplog):
    caplog.set_level(logging.INFO, logger="steps")

    @log_step("outbox.test")
    async def work(limit=1):
        return {"processed": limit}

    assert await work(limit=3) == {"processed": 3}

    exits = [r for r in caplog.records if r.message == "EXIT outbox.test"]
    assert len(exits) == 1
    assert exits[0].extra["step"] == "outbox.test"
    assert "elapsed_ms" in exits[0].extra


@pytest.mark.asyncio
async def test_log_step_logs_and_reraises_errors(caplog):
    caplog.set_level(logging.INFO, logger="steps")

    @log_step("outbox.broken")
    async def broken():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        await broken()

    assert any(r.levelno == logging.ERROR and "ERROR outbox.broken" in r.message for r in caplog.records)


def test_log_step_wraps_plain_functions(caplog):
    caplog.set_level(logging.INFO, logger="steps")

    @log_step("sync.step")
    def add(a, b):
        return a + b

    assert add(2, 3) == 5
    assert any(r.message == "EXIT sync.step" for r in caplog.records)
