"""
HTTP exceptions for the scan API
"""

from fastapi import HTTPException, status

from hwsentry.services.errors import (
    InProgressNoDataError,
    InvalidSkuError,
    RateLimitError,
    ServiceError,
    UpstreamUnavailableError,
)


class NotFoundError(HTTPException):
    """Not found error exception"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    """Conflict error exception"""

    def __init__(self, detail: str = "Resource conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class TooManyRequestsError(HTTPException):
    """Too many requests exception"""

    def __init__(
        self, detail: str = "Too many requests", retry_after: float | None = None
    ):
        headers = None
        if retry_after:
            headers = {"Retry-After": str(max(1, round(retry_after)))}
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers=headers,
        )


class ServiceUnavailableError(HTTPException):
    """Service unavailable exception"""

    def __init__(self, detail: str = "Service unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def to_http_error(error: ServiceError) -> HTTPException:
    """Map a scan error to the HTTP exception the API raises for it."""
    if isinstance(error, InvalidSkuError):
        return NotFoundError(str(error))
    if isinstance(error, RateLimitError):
        return TooManyRequestsError(str(error), retry_after=error.retry_after)
    if isinstance(error, InProgressNoDataError):
        return ConflictError(str(error))
    if isinstance(error, UpstreamUnavailableError):
        return ServiceUnavailableError(str(error))
    return ServiceUnavailableError(str(error))
