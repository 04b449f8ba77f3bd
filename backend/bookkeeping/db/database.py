"""
Database connection management and backup dumps

This module wraps the SQLAlchemy async engine shared by request handlers and
the backup job. The repository owns the engine for the lifetime of the server:
it is connected once during startup, read concurrently by routes and dumps,
and disposed during shutdown.

Dumps are plain SQL text produced by SQLite's iterdump, so every artifact is a
self-contained file that can be replayed with the sqlite3 shell.

Example:
    ```python
    from bookkeeping.db.database import DatabaseRepository

    repository = DatabaseRepository("sqlite+aiosqlite:///./bookkeeping.db", "./backups")
    await repository.connect(timeout=10)
    path = await repository.dump_to_file()
    await repository.close()
    ```
"""
import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from bookkeeping.exceptions import DatabaseConnectionError, DumpError

logger = logging.getLogger(__name__)


class DatabaseRepository:
    """Persistent store handle: connect, dump to file, close"""

    def __init__(
        self,
        database_url: str,
        backup_dir: str,
        file_prefix: str = "bookkeeping",
        engine: Optional[AsyncEngine] = None
    ) -> None:
        """
        Initialize the repository

        Args:
            database_url: SQLAlchemy async URL
            backup_dir: Directory where dump files are written
            file_prefix: Prefix for dump file names
            engine: Optional pre-built engine (tests)
        """
        self.database_url = database_url
        self.backup_dir = backup_dir
        self.file_prefix = file_prefix
        self._engine = engine
        self._connected = False

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseConnectionError("Database is not connected")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _create_engine(self) -> AsyncEngine:
        if self.database_url.startswith("sqlite"):
            return create_async_engine(
                self.database_url,
                echo=False,
                pool_pre_ping=True,
                connect_args={"timeout": 30.0},
            )
        return create_async_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    async def connect(self, timeout: float) -> None:
        """
        Open the engine and verify the store answers within timeout

        Raises:
            DatabaseConnectionError: if the store is unreachable or too slow
        """
        if self._engine is None:
            self._engine = self._create_engine()

        try:
            await asyncio.wait_for(self.ping(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(
                f"Timed out connecting to database after {timeout}s", timeout=timeout
            ) from e
        except Exception as e:
            raise DatabaseConnectionError(f"Could not connect to database: {e}", timeout=timeout) from e

        self._connected = True
        logger.info("Database connection established")

    async def ping(self) -> None:
        """Run a trivial query against the store"""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    def _new_dump_path(self) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        return os.path.join(self.backup_dir, f"{self.file_prefix}-{stamp}.sql")

    async def dump_to_file(self) -> str:
        """
        Write a full SQL dump of the store to a new file

        Returns:
            Path of the dump file

        Raises:
            DumpError: on any failure; its path attribute names the file that
                may have been partially written (empty if none was created)
        """
        if self.engine.dialect.name != "sqlite":
            raise DumpError(f"Dumps are not supported for dialect {self.engine.dialect.name}")

        path = ""
        try:
            os.makedirs(self.backup_dir, exist_ok=True)
            path = self._new_dump_path()
            async with self.engine.connect() as conn:
                raw_connection = await conn.get_raw_connection()
                driver_connection = raw_connection.driver_connection
                with open(path, "w", encoding="utf-8") as dump_file:
                    async for line in driver_connection.iterdump():
                        dump_file.write(f"{line}\n")
        except asyncio.CancelledError:
            # The caller never sees a path for a cancelled dump
            if path and os.path.exists(path):
                os.remove(path)
            raise
        except Exception as e:
            raise DumpError(f"Failed to dump database: {e}", path=path) from e

        logger.debug(f"Database dumped to {path}")
        return path

    async def close(self) -> None:
        """Dispose of the engine, closing all pooled connections"""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._connected = False
        logger.info("Database connections closed")
