import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .errors import (
    BookingIntegrityError,
    BookingValidationError,
    DuplicateWaitlistEntry,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)

logger = logging.getLogger("booking_service")

STATUS_BY_ERROR = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (BookingValidationError, status.HTTP_400_BAD_REQUEST),
    (DuplicateWaitlistEntry, status.HTTP_409_CONFLICT),
    (TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def setup_exception_handlers(app: FastAPI):

    def register(error_class, status_code):
        @app.exception_handler(error_class)
        async def handler(request: Request, exc: Exception):
            if status_code >= 500:
                logger.warning(f"{request.method} {request.url.path} failed: {exc}")
            return JSONResponse(content={"detail": str(exc)}, status_code=status_code)

    for error_class, status_code in STATUS_BY_ERROR:
        register(error_class, status_code)

    # Broken invariants: the transaction is already rolled back; log loudly
    @app.exception_handler(BookingIntegrityError)
    async def integrity_exception_handler(request: Request, exc: BookingIntegrityError):
        logger.error(f"Integrity error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(content={"detail": str(exc)}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
