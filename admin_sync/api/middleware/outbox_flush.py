import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Собственные эндпоинты outbox не должны запускать flush сами себе
SKIP_PATH_PREFIXES = ("/api/internal/outbox",)


class OutboxFlushGate:
    """
    Per-process gate for opportunistic outbox flushes.

    At most one flush runs at a time, and a new one starts only when
    `interval_seconds` have passed since the previous start, however many
    requests arrive. The flush runs as a detached task; callers never wait.
    """

    def __init__(self, runner: Callable[[int], Awaitable[Any]], interval_seconds: float, batch_size: int,
                 clock: Callable[[], float] = time.monotonic):
        self._runner = runner
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._clock = clock
        self._lock = threading.Lock()
        self._last_flush_at: float | None = None
        self._in_flight = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def last_flush_at(self) -> float | None:
        return self._last_flush_at

    def try_acquire(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._in_flight:
                return False
            if self._last_flush_at is not None and now - self._last_flush_at < self._interval:
                return False
            self._in_flight = True
            self._last_flush_at = now
            return True

    def release(self) -> None:
        with self._lock:
            self._in_flight = False

    def maybe_flush(self) -> asyncio.Task | None:
        if not self.try_acquire():
            return None
        try:
            task = asyncio.get_running_loop().create_task(self._run())
        except RuntimeError:
            self.release()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self) -> None:
        try:
            await self._runner(self._batch_size)
        except Exception:
            logger.exception("Outbox flush error")
        finally:
            self.release()

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class OutboxFlushMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        gate: OutboxFlushGate | None = getattr(request.app.state, "outbox_flush_gate", None)
        if gate is not None and not request.url.path.startswith(SKIP_PATH_PREFIXES):
            try:
                gate.maybe_flush()
            except Exception:
                logger.exception("Outbox flush could not be scheduled")
        return await call_next(request)
