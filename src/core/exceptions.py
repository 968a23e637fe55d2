"""Analytics exceptions and their HTTP error handlers."""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse
from google.api_core.exceptions import GoogleAPICallError

logger = logging.getLogger(__name__)


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics core."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NotFoundError(AnalyticsError):
    """Raised when a chatbot is missing or owned by another customer."""

    code = "CHATBOT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(AnalyticsError):
    """Raised for bad date ranges, pagination or export options."""

    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class DatastoreError(AnalyticsError):
    """Raised when a datastore write cannot be completed."""


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
    )


async def analytics_exception_handler(request: Request, exc: AnalyticsError):
    """Render analytics errors with their own status and code."""
    if isinstance(exc, DatastoreError):
        logger.error("Datastore error on %s: %s", request.url.path, exc, exc_info=exc)
        return _error_response(exc.status_code, exc.code, "Datastore operation failed")

    logger.warning("%s on %s: %s", exc.code, request.url.path, exc)
    return _error_response(exc.status_code, exc.code, str(exc))


async def datastore_exception_handler(request: Request, exc: GoogleAPICallError):
    """Firestore call failures surface as a generic internal error."""
    logger.exception("Firestore call failed on %s", request.url.path, exc_info=exc)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred. Please try again later.",
    )
