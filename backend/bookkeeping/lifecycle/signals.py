"""
Termination signal handling

SIGINT and SIGTERM set a shutdown event the lifecycle awaits. Only the first
signal counts; later ones are logged and ignored so an impatient second Ctrl+C
cannot interrupt a shutdown that is already running.
"""
import asyncio
import logging
import signal
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """One-shot shutdown trigger fed by OS signals or programmatic requests"""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.received: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous = {}

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def trigger(self, reason: str) -> None:
        if self._event.is_set():
            logger.info(f"Received {reason} during shutdown, ignoring")
            return
        self.received = reason
        logger.info(f"Received {reason}, initiating graceful shutdown...")
        self._event.set()

    async def wait(self) -> str:
        await self._event.wait()
        return self.received

    def install(self) -> None:
        """Register handlers on the running loop, falling back to signal.signal()"""
        self._loop = asyncio.get_running_loop()
        try:
            for sig in TERMINATION_SIGNALS:
                self._loop.add_signal_handler(sig, self.trigger, sig.name)
            logger.info("Signal handlers registered (loop-based)")
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            for sig in TERMINATION_SIGNALS:
                self._previous[sig] = signal.signal(sig, self._fallback_handler())
            logger.info("Signal handlers registered (fallback)")

    def _fallback_handler(self) -> Callable:
        def handler(signum, frame):
            self._loop.call_soon_threadsafe(self.trigger, signal.Signals(signum).name)
        return handler

    def uninstall(self) -> None:
        if self._loop is None:
            return
        if self._previous:
            for sig, previous in self._previous.items():
                signal.signal(sig, previous)
            self._previous.clear()
        else:
            for sig in TERMINATION_SIGNALS:
                self._loop.remove_signal_handler(sig)
        self._loop = None
