"""
Health monitoring for the persistent store
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bookkeeping.exceptions import HealthMonitorError

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Tracks whether the store answers queries

    Initialization failure is reported to the lifecycle as HealthMonitorError,
    which only degrades observability; it never stops the server.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._repository = None
        self._database_ok: Optional[bool] = None
        self._checked_at: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._repository is not None

    async def initialize(self, repository) -> None:
        """
        Bind the monitor to the repository and run a first check

        Raises:
            HealthMonitorError: if the first check fails
        """
        self._repository = repository
        if not await self.check():
            raise HealthMonitorError(f"Initial database health check failed: {self._last_error}")
        logger.info("Health monitor initialized")

    async def check(self) -> bool:
        """Ping the store and record the outcome"""
        if self._repository is None:
            return False
        try:
            await asyncio.wait_for(self._repository.ping(), timeout=self.timeout)
            self._database_ok = True
            self._last_error = None
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            self._database_ok = False
            self._last_error = str(e)
        self._checked_at = datetime.now(timezone.utc)
        return self._database_ok

    def status(self) -> Dict[str, Any]:
        """Last recorded health snapshot"""
        if self._database_ok is None:
            database = "unknown"
        else:
            database = "ok" if self._database_ok else "unavailable"
        return {
            "status": "healthy" if self._database_ok else "degraded",
            "database": database,
            "checked_at": self._checked_at.isoformat() if self._checked_at else None,
            "error": self._last_error,
        }
