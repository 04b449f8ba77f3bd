"""
Tests for the backup pipeline: dump -> upload -> local cleanup
"""
import asyncio
import os

import pytest

from bookkeeping.exceptions import DumpError, UploadError
from bookkeeping.services.backup import ArtifactState, BackupPipeline, OverlapPolicy
from tests.helpers.fakes import FakeRepository, FakeUploader


class RecordingRemover:
    """os.remove wrapper that records every attempt and can be told to fail"""

    def __init__(self, error: Exception = None):
        self.error = error
        self.paths = []

    def __call__(self, path: str) -> None:
        self.paths.append(path)
        if self.error:
            raise self.error
        os.remove(path)


@pytest.fixture
def repository(calls, backup_dir):
    return FakeRepository(calls, backup_dir)


@pytest.fixture
def uploader(calls):
    return FakeUploader(calls)


@pytest.fixture
def remover():
    return RecordingRemover()


@pytest.fixture
def pipeline(repository, uploader, remover):
    return BackupPipeline(repository, uploader, remove_file=remover)


@pytest.mark.asyncio
async def test_happy_path_uploads_then_removes(pipeline, uploader, remover, calls):
    result = await pipeline.run_once()

    assert result.success is True
    assert result.step is None
    path = result.artifact.path
    assert result.artifact.state is ArtifactState.REMOVED
    assert uploader.uploaded == [path]
    assert remover.paths == [path]
    assert not os.path.exists(path)
    assert calls == ["db.dump", "uploader.upload"]
    assert pipeline.last_result is result


@pytest.mark.asyncio
async def test_dump_failure_never_uploads(pipeline, repository, uploader, remover):
    repository.dump_error = DumpError("mysqldump exited 2", path="")

    result = await pipeline.run_once()

    assert result.success is False
    assert result.step == "dump"
    assert isinstance(result.error, DumpError)
    assert result.artifact is None
    assert uploader.uploaded == []
    assert "uploader.upload" not in uploader.calls
    # Empty path: nothing to remove
    assert remover.paths == []


@pytest.mark.asyncio
async def test_dump_failure_removes_partial_file(pipeline, repository, remover, backup_dir):
    partial = os.path.join(backup_dir, "partial.sql")
    with open(partial, "w") as f:
        f.write("CREATE TABLE")
    repository.dump_error = DumpError("disk full", path=partial)

    result = await pipeline.run_once()

    assert result.step == "dump"
    assert remover.paths == [partial]
    assert not os.path.exists(partial)


@pytest.mark.asyncio
async def test_upload_failure_removes_artifact_once(pipeline, uploader, remover):
    uploader.error = UploadError("HTTP 503")

    result = await pipeline.run_once()

    assert result.success is False
    assert result.step == "upload"
    path = result.artifact.path
    assert remover.paths == [path]
    assert not os.path.exists(path)
    assert result.artifact.state is ArtifactState.REMOVED


@pytest.mark.asyncio
async def test_unexpected_uploader_exception_is_an_upload_failure(pipeline, uploader, remover):
    uploader.error = ConnectionResetError("peer reset")

    result = await pipeline.run_once()

    assert result.step == "upload"
    assert isinstance(result.error, UploadError)
    assert len(remover.paths) == 1


@pytest.mark.asyncio
async def test_cleanup_failure_after_upload_is_reported(repository, uploader):
    remover = RecordingRemover(error=PermissionError("read-only filesystem"))
    pipeline = BackupPipeline(repository, uploader, remove_file=remover)

    result = await pipeline.run_once()

    assert result.success is False
    assert result.step == "cleanup"
    assert result.artifact.state is ArtifactState.UPLOADED
    assert uploader.uploaded == [result.artifact.path]
    # One-shot: no retry
    assert len(remover.paths) == 1
    os.remove(result.artifact.path)


@pytest.mark.asyncio
async def test_cleanup_failure_after_failed_upload_is_logged(repository, uploader, caplog):
    uploader.error = UploadError("HTTP 500")
    remover = RecordingRemover(error=PermissionError("denied"))
    pipeline = BackupPipeline(repository, uploader, remove_file=remover)

    result = await pipeline.run_once()

    assert result.step == "upload"
    assert result.artifact.state is ArtifactState.PRODUCED
    messages = [record.getMessage() for record in caplog.records]
    assert any("Failed to upload" in message for message in messages)
    assert any("Couldn't remove" in message for message in messages)
    os.remove(result.artifact.path)


@pytest.mark.asyncio
async def test_file_already_gone_counts_as_removed(repository, uploader):
    def vanish(path):
        raise FileNotFoundError(path)

    pipeline = BackupPipeline(repository, uploader, remove_file=vanish)
    result = await pipeline.run_once()

    assert result.success is True
    os.remove(result.artifact.path)


@pytest.mark.asyncio
async def test_deadline_fails_upload_and_removes_artifact(repository, uploader, remover):
    uploader.release = asyncio.Event()
    pipeline = BackupPipeline(repository, uploader, timeout=0.05, remove_file=remover)

    result = await pipeline.run_once()

    assert result.step == "upload"
    assert "deadline" in str(result.error)
    assert remover.paths == [result.artifact.path]
    assert not os.path.exists(result.artifact.path)


@pytest.mark.asyncio
async def test_cancelled_cycle_removes_artifact(pipeline, uploader, remover):
    uploader.release = asyncio.Event()
    task = pipeline.start_run()
    await uploader.started.wait()
    assert pipeline.in_flight == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(remover.paths) == 1
    assert not os.path.exists(remover.paths[0])
    assert pipeline.in_flight == 0


@pytest.mark.asyncio
async def test_closed_pipeline_skips_new_cycles(pipeline, calls):
    pipeline.close()

    result = await pipeline.run_once()

    assert result.skipped is True
    assert calls == []


@pytest.mark.asyncio
async def test_skip_policy_drops_overlapping_cycle(repository, uploader, remover):
    uploader.release = asyncio.Event()
    pipeline = BackupPipeline(repository, uploader, policy=OverlapPolicy.SKIP, remove_file=remover)

    first = pipeline.start_run()
    await uploader.started.wait()
    second = await pipeline.run_once()
    uploader.release.set()
    first_result = await first

    assert second.skipped is True
    assert first_result.success is True
    assert repository.dumps == 1


@pytest.mark.asyncio
async def test_wait_policy_serializes_cycles(repository, uploader, remover, calls):
    uploader.release = asyncio.Event()
    pipeline = BackupPipeline(repository, uploader, policy=OverlapPolicy.WAIT, remove_file=remover)

    first = pipeline.start_run()
    second = pipeline.start_run()
    await uploader.started.wait()
    await asyncio.sleep(0.01)
    assert calls.count("db.dump") == 1

    uploader.release.set()
    results = await asyncio.gather(first, second)

    assert all(result.success for result in results)
    assert calls == ["db.dump", "uploader.upload", "db.dump", "uploader.upload"]


@pytest.mark.asyncio
async def test_allow_policy_overlaps(repository, uploader, remover, calls):
    uploader.release = asyncio.Event()
    pipeline = BackupPipeline(repository, uploader, policy=OverlapPolicy.ALLOW, remove_file=remover)

    first = pipeline.start_run()
    second = pipeline.start_run()
    await asyncio.sleep(0.01)
    assert pipeline.in_flight == 2
    assert calls.count("uploader.upload") == 2

    uploader.release.set()
    results = await asyncio.gather(first, second)
    assert all(result.success for result in results)
    assert results[0].artifact.path != results[1].artifact.path


@pytest.mark.asyncio
async def test_drain_waits_for_in_flight_cycle(pipeline, uploader):
    uploader.release = asyncio.Event()
    task = pipeline.start_run()
    await uploader.started.wait()

    assert await pipeline.drain(0.01) is False

    uploader.release.set()
    assert await pipeline.drain(1.0) is True
    assert (await task).success is True


@pytest.mark.asyncio
async def test_cancel_in_flight(pipeline, uploader, remover):
    uploader.release = asyncio.Event()
    pipeline.start_run()
    await uploader.started.wait()

    cancelled = await pipeline.cancel_in_flight()

    assert cancelled == 1
    assert pipeline.in_flight == 0
    assert not os.path.exists(remover.paths[0])
