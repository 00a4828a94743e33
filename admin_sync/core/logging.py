import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict

# Контекст трассировки: запрос, экземпляр процесса, фоновая задача
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
job_var: ContextVar[str | None] = ContextVar("job", default=None)

REDACT_KEYS = {
    k.strip().lower()
    for k in os.getenv("LOG_REDACT_KEYS", "password,authorization,apikey,x-api-key,token,secret,x-admin-sync-secret").split(",")
    if k.strip()
}
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()
LOG_BODY_MAX = int(os.getenv("LOG_BODY_MAX", "2000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SERVICE_NAME = "admin-sync"

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] run=%(run_id)s req=%(request_id)s job=%(job)s %(message)s"


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: ("***" if str(k).lower() in REDACT_KEYS else _redact(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    if isinstance(value, str) and len(value) > LOG_BODY_MAX:
        return value[:LOG_BODY_MAX] + f"...(+{len(value)-LOG_BODY_MAX} chars)"
    return value


class ContextFilter(logging.Filter):
    """Copies the tracing context vars onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get()
        record.request_id = request_id_var.get()
        record.job = job_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": round(time.time() * 1000),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", run_id_var.get()),
            "request_id": getattr(record, "request_id", request_id_var.get()),
            "job": getattr(record, "job", job_var.get()),
        }
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        # structured fields come in as logger.info(..., extra={"extra": {...}})
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            base.update(_redact(extra))
        return json.dumps(base, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    level = (level or LOG_LEVEL).upper()
    root.setLevel(getattr(logging, level, logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    if (fmt or LOG_FORMAT).lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    # httpx логирует каждый запрос сам, у нас для этого есть логгер "http"
    logging.getLogger("httpx").setLevel(logging.WARNING)


def set_run_id(value: str | None = None) -> str:
    rid = value or str(uuid.uuid4())
    run_id_var.set(rid)
    return rid


def set_request_id(value: str | None) -> str | None:
    request_id_var.set(value)
    return value


def set_job(name: str | None) -> str | None:
    """Marks log lines of a scheduled or triggered job (process_outbox_events_job, outbox_flush...)."""
    job_var.set(name)
    return name
