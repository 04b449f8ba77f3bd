"""
HTTP serving loop
"""
import asyncio
import contextlib
import logging
from typing import Optional

import uvicorn

logger = logging.getLogger(__name__)


class _LifecycleServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the lifecycle"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class ServingLoop:
    """Runs the ASGI app in a background task until asked to stop"""

    def __init__(self, app, host: str, port: int, grace_period: float = 15.0):
        self.host = host
        self.port = port
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            timeout_graceful_shutdown=grace_period or None,
            timeout_keep_alive=60,
        )
        self._server = _LifecycleServer(config)
        self._task: Optional[asyncio.Task] = None

    @property
    def started(self) -> bool:
        return self._server.started

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _serve(self) -> None:
        try:
            await self._server.serve()
        except asyncio.CancelledError:
            raise
        except BaseException as e:
            # uvicorn calls sys.exit when it cannot bind
            logger.error(f"HTTP server stopped unexpectedly: {e!r}")

    def start(self) -> asyncio.Task:
        """Begin accepting connections without blocking the caller"""
        self._task = asyncio.create_task(self._serve(), name="http-server")
        return self._task

    async def stop(self, grace_period: float) -> bool:
        """
        Stop accepting connections and drain in-flight requests

        Args:
            grace_period: Seconds allowed for in-flight requests to finish

        Returns:
            True if the server drained within the grace period, False if
            remaining connections were abandoned
        """
        if self._task is None or self._task.done():
            return True

        self._server.should_exit = True
        done, _ = await asyncio.wait({self._task}, timeout=grace_period)
        if done:
            return True

        logger.warning(f"Requests still in flight after {grace_period}s grace period, closing connections")
        self._server.force_exit = True
        done, _ = await asyncio.wait({self._task}, timeout=1.0)
        if not done:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return False
