"""
Tests for termination signal handling and the HTTP serving loop
"""
import asyncio
import contextlib
import logging
import os
import signal
import sys

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from bookkeeping.lifecycle import ServingLoop, ShutdownSignal


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
@pytest.mark.asyncio
async def test_sigterm_triggers_shutdown():
    shutdown = ShutdownSignal()
    shutdown.install()
    try:
        os.kill(os.getpid(), signal.SIGTERM)
        reason = await asyncio.wait_for(shutdown.wait(), timeout=2)
    finally:
        shutdown.uninstall()

    assert reason == "SIGTERM"
    assert shutdown.is_set


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals only")
@pytest.mark.asyncio
async def test_repeated_signal_is_swallowed(caplog):
    caplog.set_level(logging.INFO)
    shutdown = ShutdownSignal()
    shutdown.install()
    try:
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.wait_for(shutdown.wait(), timeout=2)
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(0.05)
    finally:
        shutdown.uninstall()

    assert shutdown.received == "SIGINT"
    assert "during shutdown, ignoring" in caplog.text


@pytest.mark.asyncio
async def test_programmatic_trigger():
    shutdown = ShutdownSignal()
    assert not shutdown.is_set

    shutdown.trigger("test")

    assert await shutdown.wait() == "test"


@pytest.mark.asyncio
async def test_uninstall_without_install_is_noop():
    ShutdownSignal().uninstall()


def _ping_app() -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    return app


async def _wait_started(loop: ServingLoop) -> None:
    for _ in range(200):
        if loop.started:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("HTTP server did not start")


@pytest.mark.asyncio
async def test_serving_loop_serves_and_stops(unused_tcp_port):
    serving = ServingLoop(_ping_app(), "127.0.0.1", unused_tcp_port, grace_period=2)
    serving.start()
    await _wait_started(serving)

    async with AsyncClient(base_url=f"http://127.0.0.1:{unused_tcp_port}") as client:
        response = await client.get("/ping")
    assert response.json() == {"pong": True}
    assert serving.running

    assert await serving.stop(2) is True
    assert not serving.running


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    serving = ServingLoop(_ping_app(), "127.0.0.1", 0)
    assert await serving.stop(1) is True


@pytest.mark.asyncio
async def test_stop_abandons_requests_after_grace_period(unused_tcp_port):
    entered = asyncio.Event()
    release = asyncio.Event()
    app = FastAPI()

    @app.get("/slow")
    async def slow():
        entered.set()
        await release.wait()
        return {"done": True}

    serving = ServingLoop(app, "127.0.0.1", unused_tcp_port, grace_period=10)
    serving.start()
    await _wait_started(serving)

    client = AsyncClient(base_url=f"http://127.0.0.1:{unused_tcp_port}")
    request = asyncio.create_task(client.get("/slow"))
    try:
        await asyncio.wait_for(entered.wait(), timeout=5)

        loop = asyncio.get_running_loop()
        began = loop.time()
        drained = await serving.stop(0.3)
        elapsed = loop.time() - began

        assert drained is False
        assert 0.25 <= elapsed < 2.5
        assert not serving.running
    finally:
        release.set()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(request, timeout=2)
        await client.aclose()
