"""
Custom exceptions for the bookkeeping server lifecycle and backups
"""
from typing import Optional


class BookkeepingError(Exception):
    """Base exception for all bookkeeping server errors"""
    pass


class FatalStartupError(BookkeepingError):
    """Error that prevents the server from ever reaching the running phase"""
    pass


class ConfigurationError(FatalStartupError):
    """Missing or malformed configuration"""
    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class DatabaseConnectionError(FatalStartupError):
    """Persistent store could not be reached"""
    def __init__(self, message: str, timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class ScheduleError(FatalStartupError):
    """Malformed backup schedule expression"""
    def __init__(self, message: str, expression: Optional[str] = None):
        super().__init__(message)
        self.expression = expression


class HealthMonitorError(BookkeepingError):
    """Health monitor could not be initialized"""
    pass


class LifecycleError(BookkeepingError):
    """Illegal lifecycle phase transition or repeated start"""
    pass


class BackupError(BookkeepingError):
    """Error in one step of a backup cycle"""
    step = "backup"

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class DumpError(BackupError):
    """Database dump failed; path holds whatever was (partially) written"""
    step = "dump"


class UploadError(BackupError):
    """Upload of a backup artifact to remote storage failed"""
    step = "upload"

    def __init__(self, message: str, path: str = "", status_code: Optional[int] = None):
        super().__init__(message, path=path)
        self.status_code = status_code


class CleanupError(BackupError):
    """Local backup artifact could not be removed"""
    step = "cleanup"
