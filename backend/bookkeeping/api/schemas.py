"""
Response models for the API
"""
from typing import Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    database: str
    checked_at: Optional[str] = None
    error: Optional[str] = None


class BackupStatusResponse(BaseModel):
    success: bool
    skipped: bool
    step: Optional[str] = None
    artifact: Optional[str] = None
    artifact_state: Optional[str] = None
    error: Optional[str] = None
    finished_at: str
    in_flight: int
    policy: str
