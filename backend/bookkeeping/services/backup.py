"""
Backup pipeline: dump the database, upload the dump, remove the local file

Each cycle owns exactly one local artifact and guarantees the file does not
outlive the cycle. Whatever happens (dump failure, upload failure, deadline,
cancellation during shutdown) the file is either uploaded and then removed,
or removed without upload. Removal never happens before the upload outcome is
known.

The pipeline also tracks its in-flight cycles so shutdown can stop accepting
new work, wait for running cycles, and cancel stragglers.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Type

from bookkeeping.exceptions import BackupError, CleanupError, DumpError, UploadError

logger = logging.getLogger(__name__)


class OverlapPolicy(str, Enum):
    """What a cycle does when another one is still running"""
    ALLOW = "allow"
    SKIP = "skip"
    WAIT = "wait"


class ArtifactState(str, Enum):
    PRODUCED = "produced"
    UPLOADED = "uploaded"
    REMOVED = "removed"


@dataclass
class BackupArtifact:
    """One local dump file and how far the cycle got with it"""
    path: str
    state: ArtifactState = ArtifactState.PRODUCED


@dataclass
class BackupResult:
    """Outcome of a single backup cycle"""
    success: bool
    step: Optional[str] = None
    artifact: Optional[BackupArtifact] = None
    error: Optional[BaseException] = None
    skipped: bool = False
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "step": self.step,
            "artifact": self.artifact.path if self.artifact else None,
            "artifact_state": self.artifact.state.value if self.artifact else None,
            "error": str(self.error) if self.error else None,
            "finished_at": self.finished_at.isoformat(),
        }


class BackupPipeline:
    """
    Orchestrates backup cycles against a dump producer and a remote uploader

    The producer must expose ``async dump_to_file() -> str`` and raise
    DumpError carrying the (possibly partial) path on failure. The uploader
    must expose ``async upload(path)`` and raise UploadError on failure.
    """

    def __init__(
        self,
        producer: Any,
        uploader: Any,
        policy: OverlapPolicy = OverlapPolicy.ALLOW,
        timeout: Optional[float] = None,
        remove_file: Callable[[str], None] = os.remove
    ):
        """
        Initialize pipeline

        Args:
            producer: Dump producer (DatabaseRepository)
            uploader: Remote uploader (RemoteUploader)
            policy: Behaviour for overlapping cycles
            timeout: Default deadline in seconds covering dump and upload
            remove_file: Function used to delete local artifacts
        """
        self._producer = producer
        self._uploader = uploader
        self.policy = OverlapPolicy(policy)
        self.timeout = timeout
        self._remove_file = remove_file
        self._in_flight: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._lock = asyncio.Lock()
        self._accepting = True
        self.last_result: Optional[BackupResult] = None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def accepting(self) -> bool:
        return self._accepting

    def _track(self, task: asyncio.Task) -> None:
        self._in_flight.add(task)
        self._idle.clear()

    def _untrack(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not self._in_flight:
            self._idle.set()

    def start_run(self, timeout: Optional[float] = None) -> asyncio.Task:
        """Launch a cycle as its own task; it counts as in flight immediately"""
        task = asyncio.create_task(self.run_once(timeout), name="backup-cycle")
        self._track(task)
        task.add_done_callback(self._untrack)
        return task

    async def run_once(self, timeout: Optional[float] = None) -> BackupResult:
        """
        Run one backup cycle

        Args:
            timeout: Deadline in seconds for dump + upload (defaults to the
                pipeline timeout; None means unbounded)

        Returns:
            BackupResult describing the outcome; failures are logged, not raised
        """
        if not self._accepting:
            logger.info("Backup pipeline closed, not starting a new cycle")
            return BackupResult(success=False, skipped=True)

        if self.policy is OverlapPolicy.SKIP and self._lock.locked():
            logger.warning("Previous backup cycle still running, skipping this one")
            return BackupResult(success=False, skipped=True)

        task = asyncio.current_task()
        self._track(task)
        try:
            if self.policy is OverlapPolicy.ALLOW:
                result = await self._run(timeout if timeout is not None else self.timeout)
            else:
                async with self._lock:
                    if not self._accepting:
                        return BackupResult(success=False, skipped=True)
                    result = await self._run(timeout if timeout is not None else self.timeout)
        finally:
            self._untrack(task)

        self.last_result = result
        return result

    async def _run(self, timeout: Optional[float]) -> BackupResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        artifact: Optional[BackupArtifact] = None

        try:
            try:
                path = await self._with_deadline(self._producer.dump_to_file(), deadline, DumpError)
            except DumpError as e:
                logger.error(f"Failed to dump database to file: {e}", extra={"step": "dump"})
                self._remove_quietly(e.path)
                return BackupResult(success=False, step="dump", error=e)

            artifact = BackupArtifact(path=path)

            try:
                await self._with_deadline(
                    self._uploader.upload(path), deadline, UploadError, path=path
                )
            except UploadError as e:
                logger.error(
                    f"Failed to upload backup file: {e}",
                    extra={"step": "upload", "artifact": path},
                )
                if self._remove_quietly(path):
                    artifact.state = ArtifactState.REMOVED
                return BackupResult(success=False, step="upload", artifact=artifact, error=e)

            artifact.state = ArtifactState.UPLOADED

            try:
                self._remove(path)
            except CleanupError as e:
                logger.error(
                    f"Backup uploaded but local file was not removed: {e}",
                    extra={"step": "cleanup", "artifact": path},
                )
                return BackupResult(success=False, step="cleanup", artifact=artifact, error=e)

            artifact.state = ArtifactState.REMOVED
            logger.info(f"Backup uploaded and cleaned up: {path}", extra={"artifact": path})
            return BackupResult(success=True, artifact=artifact)

        except asyncio.CancelledError:
            if artifact is not None and artifact.state is not ArtifactState.REMOVED:
                logger.warning(
                    "Backup cycle cancelled, removing local artifact",
                    extra={"artifact": artifact.path},
                )
                if self._remove_quietly(artifact.path):
                    artifact.state = ArtifactState.REMOVED
            raise

    @staticmethod
    async def _with_deadline(
        operation: Awaitable,
        deadline: Optional[float],
        error_cls: Type[BackupError],
        path: str = ""
    ):
        """Await one step, converting timeouts and foreign errors into error_cls"""
        try:
            if deadline is None:
                return await operation
            remaining = deadline - asyncio.get_running_loop().time()
            return await asyncio.wait_for(operation, timeout=max(remaining, 0))
        except BackupError:
            raise
        except asyncio.TimeoutError as e:
            raise error_cls(f"{error_cls.step} step exceeded backup deadline", path=path) from e
        except Exception as e:
            raise error_cls(str(e) or type(e).__name__, path=path) from e

    def _remove(self, path: str) -> None:
        """Delete a local artifact; a file that is already gone counts as removed"""
        if not path:
            logger.debug("No local artifact to remove")
            return
        try:
            self._remove_file(path)
        except FileNotFoundError:
            logger.debug(f"Local artifact already gone: {path}")
        except OSError as e:
            raise CleanupError(f"Couldn't remove {path}: {e}", path=path) from e

    def _remove_quietly(self, path: str) -> bool:
        """Best-effort removal on a failure path; returns True if the file is gone"""
        try:
            self._remove(path)
        except CleanupError as e:
            logger.error(f"Couldn't remove backup file: {e}", extra={"step": "cleanup", "artifact": path})
            return False
        return True

    def close(self) -> None:
        """Stop accepting new cycles; running ones continue"""
        self._accepting = False

    async def drain(self, timeout: float) -> bool:
        """
        Wait for in-flight cycles to finish

        Returns:
            True if no cycle is running any more, False on timeout
        """
        if not self._in_flight:
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def cancel_in_flight(self, timeout: float = 5.0) -> int:
        """Cancel running cycles and give them time to remove their artifacts"""
        tasks = [task for task in self._in_flight if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(f"{len(pending)} backup cycle(s) did not finish cancelling")
        return len(tasks)
