"""Exception hierarchy shared by the job pipeline, the catalog client and the API layer"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class DownloadServiceError(Exception):
    """Base exception for download service errors"""

    kind = ErrorKind.FAILURE


class ValidationError(DownloadServiceError):
    """Exception for input validation errors"""

    kind = ErrorKind.VALIDATION


class NotFoundError(DownloadServiceError):
    """Exception for unknown jobs, artifacts and catalog entities"""

    kind = ErrorKind.NOT_FOUND


class JobNotReadyError(NotFoundError):
    """The job exists but has no artifact yet"""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class FetchError(DownloadServiceError):
    """Exception for audio fetch failures"""


class FetchTimeoutError(FetchError):
    """The final fetch attempt exceeded its deadline"""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, timeout_seconds: float = 0):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class RetriesExhaustedError(FetchError):
    """Every fetch attempt failed"""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        message = f"Download failed after {attempts} attempt{'s' if attempts != 1 else ''}"
        if last_error is not None and str(last_error):
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class DownloadCancelledError(FetchError):
    """A fetch was aborted because its job was cancelled"""

    kind = ErrorKind.CANCELLED


class CatalogError(DownloadServiceError):
    """Exception for catalog lookup failures"""


class ServiceUnavailableError(DownloadServiceError):
    """Exception for service unavailability"""


class ProxyError(DownloadServiceError):
    """Exception for proxy list failures"""
