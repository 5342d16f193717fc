import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: str = "An unexpected error occurred"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    detail = "Authentication required"


class Forbidden(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    detail = "Insufficient permissions"


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Not found"


class NoActiveSession(NotFound):
    detail = "No active call session"


class DuplicateAction(AppError):
    status_code = status.HTTP_409_CONFLICT
    detail = "Already exists"


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Validation failed"


class QuotaExceeded(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    detail = "Daily match limit reached. Upgrade to Premium for unlimited matches."


class ProviderUnavailable(AppError):
    """A VOIP vendor call failed; `vendor_status` holds the HTTP status when known."""

    detail = "Call provider unavailable"

    def __init__(self, detail: str | None = None, vendor_status: int | None = None) -> None:
        super().__init__(detail)
        self.vendor_status = vendor_status


class ProviderNotConfigured(ProviderUnavailable):
    detail = "Call provider is not configured"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__, request.method, request.url.path, exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
