import functools
import inspect
import logging
import time
from typing import Any, Callable

from .logging import _redact

logger = logging.getLogger("steps")


def _elapsed_ms(t0: float) -> int:
    return round((time.perf_counter() - t0) * 1000)


def _log_exit(step: str, t0: float, result: Any) -> None:
    logger.info("EXIT %s", step, extra={"extra": {"step": step, "elapsed_ms": _elapsed_ms(t0),
                                                   "result_preview": str(result)[:200]}})


def _log_error(step: str, t0: float, exc: BaseException) -> None:
    logger.error("ERROR %s: %s", step, exc, extra={"extra": {"step": step, "elapsed_ms": _elapsed_ms(t0)}},
                 exc_info=True)


def log_step(step: str):
    """
    Logs entry, exit, timing and exceptions of a step.
    Example: @log_step("outbox.process_once")
    """
    def decorator(fn: Callable):
        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def awrapped(*args, **kwargs):
                t0 = time.perf_counter()
                logger.debug("ENTER %s", step, extra={"extra": {"step": step, "args": _redact(kwargs)}})
                try:
                    result = await fn(*args, **kwargs)
                except Exception as e:
                    _log_error(step, t0, e)
                    raise
                _log_exit(step, t0, result)
                return result

            return awrapped

        @functools.wraps(fn)
        def wrapped(*args, **kwargs):
            t0 = time.perf_counter()
            logger.debug("ENTER %s", step, extra={"extra": {"step": step, "args": _redact(kwargs)}})
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                _log_error(step, t0, e)
                raise
            _log_exit(step, t0, result)
            return result

        return wrapped

    return decorator
