"""
Standardized API exception classes
"""
from typing import Optional, Dict, Any
import uuid


class APIError(Exception):
    """Base API exception rendered as a structured JSON error"""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.request_id = request_id or str(uuid.uuid4())[:8]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "request_id": self.request_id,
        }


class NotFoundError(APIError):
    """Resource not found (404)"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=404, code="NOT_FOUND", details=details)
