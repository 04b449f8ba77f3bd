"""
Backup status routes
"""
from fastapi import APIRouter, Request

from bookkeeping.api.exceptions import NotFoundError
from bookkeeping.api.schemas import BackupStatusResponse

router = APIRouter()


@router.get("/last", response_model=BackupStatusResponse)
async def last_backup(request: Request):
    """Outcome of the most recent backup cycle"""
    pipeline = request.app.state.backup_pipeline
    if pipeline is None or pipeline.last_result is None:
        raise NotFoundError("No backup cycle has completed yet")
    return {
        "in_flight": pipeline.in_flight,
        "policy": pipeline.policy.value,
        **pipeline.last_result.to_dict(),
    }
