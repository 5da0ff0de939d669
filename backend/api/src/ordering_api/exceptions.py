"""FastAPI exception handlers for converting OrderingError to HTTP responses.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: validation, missing tenant, configuration, webhook rejection
- 403 Forbidden: actor not allowed to make the change, or polling disabled
- 404 Not Found: tenant-scoped lookup miss
- 409 Conflict: illegal transition or idempotency key still in progress
- 502 Bad Gateway: payment provider failure (safe to retry with the same key)

Usage:
    from ordering_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
)

from ordering.models.errors import ErrorCode, OrderingError
from ordering.utils.logging import get_logger
from ordering_api.models.common import format_validation_errors

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_FAILED: HTTP_400_BAD_REQUEST,
    ErrorCode.TENANT_REQUIRED: HTTP_400_BAD_REQUEST,
    ErrorCode.PAYMENT_NOT_CONFIGURED: HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_PROVIDER: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.MALFORMED_WEBHOOK: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_IDEMPOTENCY_KEY: HTTP_400_BAD_REQUEST,
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    ErrorCode.POLLING_DISABLED: HTTP_403_FORBIDDEN,
    ErrorCode.ORDER_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.CONFIG_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: HTTP_409_CONFLICT,
    ErrorCode.IDEMPOTENCY_CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.PROVIDER_ERROR: HTTP_502_BAD_GATEWAY,
    # Stored ciphertext is unusable; nothing the caller can fix in the request
    ErrorCode.SECRET_DECRYPTION_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Convert a domain error to its JSON error body and status code."""
    status_code = get_http_status_for_error(exc.code)
    if status_code >= 500:
        logger.error("Request failed with %s: %s", exc.code.value, exc.message)

    return JSONResponse(
        status_code=status_code,
        content=exc.to_error_response().model_dump(mode="json"),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request body/query validation failures as 400 in the standard shape."""
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=format_validation_errors(list(exc.errors())).model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for uncaught exceptions. Internal details stay in the logs."""
    logger.exception("Unhandled exception: %s", exc)

    error_response = {
        "success": False,
        "error_code": "ERR_INTERNAL",
        "message": "An unexpected error occurred",
        "recovery": "Please try again later or contact support",
        "details": None,
    }

    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(OrderingError, ordering_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
