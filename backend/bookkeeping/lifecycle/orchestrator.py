"""
Server lifecycle orchestration

ServerLifecycle owns every piece of process-wide state (phase, start time,
address and the handles of each subsystem) and runs two ordered sequences,
each exactly once:

startup:  configuration -> database -> routing -> health monitor -> address
          -> backup scheduler -> HTTP server
shutdown: HTTP server (bounded drain) -> backup scheduler (bounded drain of
          in-flight cycles) -> database

Startup aborts on the first fatal error. Shutdown is best-effort: every step
logs its own failure and the sequence always reaches STOPPED.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Callable, Optional

from bookkeeping.api.app import create_app
from bookkeeping.config import Config
from bookkeeping.db.database import DatabaseRepository
from bookkeeping.exceptions import ConfigurationError, LifecycleError
from bookkeeping.lifecycle.serving import ServingLoop
from bookkeeping.lifecycle.signals import ShutdownSignal
from bookkeeping.services.backup import BackupPipeline, OverlapPolicy
from bookkeeping.services.health import HealthMonitor
from bookkeeping.services.scheduler import BackupScheduler
from bookkeeping.services.uploader import RemoteUploader
from bookkeeping.utils.structured_logging import configure_from

logger = logging.getLogger(__name__)


class ServerPhase(IntEnum):
    UNINITIALIZED = 0
    INITIALIZING = 1
    RUNNING = 2
    SHUTTING_DOWN = 3
    STOPPED = 4


@dataclass(frozen=True)
class ServerAddress:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class LifecycleState:
    """Phase machine plus the values resolved once during startup"""
    phase: ServerPhase = ServerPhase.UNINITIALIZED
    started_at: Optional[datetime] = None
    address: Optional[ServerAddress] = None
    _started_monotonic: Optional[float] = None

    def transition(self, phase: ServerPhase) -> None:
        """Move forward to phase; phases are never revisited"""
        if phase <= self.phase:
            raise LifecycleError(f"Illegal phase transition {self.phase.name} -> {phase.name}")
        logger.debug(f"Phase {self.phase.name} -> {phase.name}", extra={"phase": phase.name})
        self.phase = phase

    def mark_started(self) -> None:
        if self.started_at is not None:
            raise LifecycleError("Startup timestamp already recorded")
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()

    def uptime(self) -> timedelta:
        if self._started_monotonic is None:
            return timedelta(0)
        return timedelta(seconds=time.monotonic() - self._started_monotonic)


def _default_repository(config: Config) -> DatabaseRepository:
    return DatabaseRepository(config.DATABASE_URL, config.BACKUP_DIR, config.BACKUP_FILE_PREFIX)


def _default_uploader(config: Config) -> RemoteUploader:
    return RemoteUploader(config.BACKUP_UPLOAD_URL, config.BACKUP_UPLOAD_TOKEN)


def _default_serving_loop(app, address: ServerAddress, config: Config) -> ServingLoop:
    return ServingLoop(app, address.host, address.port, config.SHUTDOWN_GRACE_SECONDS)


class ServerLifecycle:
    """
    Lifecycle coordinator for the bookkeeping server

    Collaborators are created through factories so each one can be replaced
    (tests pass fakes; production uses the defaults).
    """

    def __init__(
        self,
        config_loader: Callable[[], Config] = Config.from_env,
        repository_factory: Callable = _default_repository,
        uploader_factory: Callable = _default_uploader,
        health_monitor_factory: Callable = HealthMonitor,
        app_factory: Callable = create_app,
        scheduler_factory: Callable = BackupScheduler,
        serving_factory: Callable = _default_serving_loop,
        configure_logging: bool = True
    ) -> None:
        self._config_loader = config_loader
        self._repository_factory = repository_factory
        self._uploader_factory = uploader_factory
        self._health_monitor_factory = health_monitor_factory
        self._app_factory = app_factory
        self._scheduler_factory = scheduler_factory
        self._serving_factory = serving_factory
        self._configure_logging = configure_logging

        self.state = LifecycleState()
        self.shutdown_signal = ShutdownSignal()
        self.config: Optional[Config] = None
        self.repository = None
        self.uploader = None
        self.pipeline: Optional[BackupPipeline] = None
        self.health_monitor = None
        self.app = None
        self.scheduler = None
        self.serving = None
        self._stop_started = False

    @property
    def phase(self) -> ServerPhase:
        return self.state.phase

    @property
    def address(self) -> Optional[ServerAddress]:
        return self.state.address

    def _resolve_config(self) -> Config:
        try:
            config = self._config_loader()
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Could not load configuration: {e}") from e

        if self._configure_logging:
            configure_from(config)
        for warning in config.validate():
            logger.warning(f"Config warning: {warning}")
        return config

    async def start(self) -> None:
        """
        Bring every subsystem online in order

        Raises:
            FatalStartupError: configuration, database or schedule failure;
                the server never reaches RUNNING
            LifecycleError: if called more than once
        """
        if self.state.phase is not ServerPhase.UNINITIALIZED:
            raise LifecycleError("Server lifecycle can only be started once")

        self.state.transition(ServerPhase.INITIALIZING)
        self.state.mark_started()
        logger.info("Initializing server...")

        self.config = self._resolve_config()
        config = self.config

        logger.info("Connecting to database...")
        self.repository = self._repository_factory(config)
        await self.repository.connect(timeout=config.SERVER_CONTEXT_TIMEOUT)

        logger.info("Setting up routing...")
        self.uploader = self._uploader_factory(config)
        self.pipeline = BackupPipeline(
            self.repository,
            self.uploader,
            policy=OverlapPolicy(config.BACKUP_OVERLAP_POLICY),
            timeout=config.backup_timeout,
        )
        self.health_monitor = self._health_monitor_factory(timeout=config.SERVER_CONTEXT_TIMEOUT)
        self.app = self._app_factory(
            version=config.APP_VERSION,
            health_monitor=self.health_monitor,
            backup_pipeline=self.pipeline,
        )

        try:
            await self.health_monitor.initialize(self.repository)
        except Exception as e:
            logger.warning(f"Health monitor error: {e}")

        self.state.address = ServerAddress(config.SERVER_HOST, config.SERVER_PORT)

        self.scheduler = self._scheduler_factory(self.pipeline, config.CRON_BACKUP_DAILY)
        self.scheduler.start()

        if config.is_production():
            logger.info(f"Environment is: {config.APP_ENV}")
        else:
            logger.warning(f"Environment is: {config.APP_ENV}")

        self.state.transition(ServerPhase.RUNNING)
        self.serving = self._serving_factory(self.app, self.state.address, config)
        self.serving.start()
        logger.info(
            f"App version: {config.APP_VERSION}, listening at: {self.state.address}",
            extra={"phase": ServerPhase.RUNNING.name},
        )

    def request_shutdown(self, reason: str = "shutdown request") -> None:
        """Trigger shutdown as if a termination signal had arrived"""
        self.shutdown_signal.trigger(reason)

    async def run_until_signal(self) -> str:
        """
        Block until SIGINT/SIGTERM (or request_shutdown) is observed

        Handlers stay installed until stop() finishes so later signals are
        swallowed instead of interrupting the shutdown.

        Returns:
            Name of the signal or reason that triggered shutdown
        """
        self.shutdown_signal.install()
        return await self.shutdown_signal.wait()

    async def stop(self) -> None:
        """
        Shut every subsystem down in order; later calls are no-ops
        """
        if self._stop_started:
            logger.debug("Shutdown already performed, ignoring")
            return
        self._stop_started = True

        self.state.transition(ServerPhase.SHUTTING_DOWN)
        logger.info("Shutting down server...", extra={"phase": ServerPhase.SHUTTING_DOWN.name})
        config = self.config

        if self.serving is not None:
            grace = config.SHUTDOWN_GRACE_SECONDS if config else 0
            try:
                if await self.serving.stop(grace):
                    logger.info("Done: HTTP server stopped")
                else:
                    logger.warning(f"HTTP server drain timed out after {grace}s, connections abandoned")
            except Exception as e:
                logger.error(f"Error stopping HTTP server: {e}", exc_info=True)

        if self.scheduler is not None:
            drain_timeout = config.BACKUP_DRAIN_TIMEOUT_SECONDS if config else 0
            try:
                await self.scheduler.stop(drain_timeout)
                logger.info("Done: backup scheduler stopped")
            except Exception as e:
                logger.error(f"Error stopping backup scheduler: {e}", exc_info=True)

        if self.uploader is not None:
            try:
                await self.uploader.aclose()
            except Exception as e:
                logger.error(f"Error closing uploader: {e}", exc_info=True)

        if self.repository is not None:
            try:
                await self.repository.close()
                logger.info("Done: database closed")
            except Exception as e:
                logger.error(f"Error closing database: {e}", exc_info=True)

        self.state.transition(ServerPhase.STOPPED)
        uptime = self.state.uptime()
        logger.info(
            f"Shutting down........ bye. Server was up for: {uptime}",
            extra={"phase": ServerPhase.STOPPED.name, "uptime": str(uptime)},
        )
        self.shutdown_signal.uninstall()

    async def serve(self) -> int:
        """
        Start, wait for a termination signal, stop

        Returns:
            Process exit status (always 0 once startup succeeded)
        """
        await self.start()
        await self.run_until_signal()
        await self.stop()
        return 0
