import asyncio

import httpx
import pytest
from fastapi import FastAPI

from admin_sync.api.middleware.outbox_flush import OutboxFlushGate, OutboxFlushMiddleware


class MonotonicClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def mono():
    return MonotonicClock()


@pytest.mark.asyncio
async def test_gate_runs_once_per_interval(mono):
    calls = []

    async def runner(limit):
        calls.append(limit)

    gate = OutboxFlushGate(runner, interval_seconds=30, batch_size=5, clock=mono)

    first = gate.maybe_flush()
    assert first is not None
    await first
    assert calls == [5]
    assert gate.last_flush_at == 1000.0

    mono.now += 29.9
    assert gate.maybe_flush() is None

    mono.now += 0.1
    second = gate.maybe_flush()
    assert second is not None
    await second
    assert calls == [5, 5]


@pytest.mark.asyncio
async def test_gate_never_overlaps_flushes(mono):
    started = asyncio.Event()
    finish = asyncio.Event()
    runs = 0

    async def runner(limit):
        nonlocal runs
        runs += 1
        started.set()
        await finish.wait()

    gate = OutboxFlushGate(runner, interval_seconds=0, batch_size=5, clock=mono)

    task = gate.maybe_flush()
    await started.wait()
    assert gate.in_flight is True

    mono.now += 3600
    assert gate.maybe_flush() is None

    finish.set()
    await task
    assert gate.in_flight is False
    assert runs == 1


@pytest.mark.asyncio
async def test_gate_swallows_runner_errors(mono, caplog):
    async def runner(limit):
        raise RuntimeError("db down")

    gate = OutboxFlushGate(runner, interval_seconds=30, batch_size=5, clock=mono)

    await gate.maybe_flush()

    assert gate.in_flight is False
    assert any("Outbox flush error" in r.message for r in caplog.records)


@pytest.mark.asyncio
async def test_wait_idle_waits_for_running_flush(mono):
    done = []

    async def runner(limit):
        await asyncio.sleep(0)
        done.append(limit)

    gate = OutboxFlushGate(runner, interval_seconds=30, batch_size=3, clock=mono)
    gate.maybe_flush()

    await gate.wait_idle()

    assert done == [3]


def _app_with_gate(gate):
    app = FastAPI()
    app.add_middleware(OutboxFlushMiddleware)
    app.state.outbox_flush_gate = gate

    @app.get("/api/studios")
    async def studios():
        return {"ok": True}

    @app.get("/api/internal/outbox/status")
    async def outbox_status():
        return {"ok": True}

    return app


@pytest.mark.asyncio
async def test_middleware_triggers_flush_without_delaying_response(mono):
    release = asyncio.Event()

    async def runner(limit):
        await release.wait()

    gate = OutboxFlushGate(runner, interval_seconds=30, batch_size=5, clock=mono)
    app = _app_with_gate(gate)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/studios")

    assert response.status_code == 200
    assert gate.in_flight is True
    release.set()
    await gate.wait_idle()
    assert gate.in_flight is False


@pytest.mark.asyncio
async def test_middleware_skips_outbox_endpoints(mono):
    async def runner(limit):
        return None

    gate = OutboxFlushGate(runner, interval_seconds=30, batch_size=5, clock=mono)
    app = _app_with_gate(gate)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/internal/outbox/status")

    assert response.status_code == 200
    assert gate.last_flush_at is None


@pytest.mark.asyncio
async def test_middleware_without_gate_is_a_no_op():
    app = _app_with_gate(None)

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/studios")

    assert response.json() == {"ok": True}
