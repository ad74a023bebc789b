"""FastAPI exception handlers for FulfillmentError.

The gateway retries any non-2xx delivery, so the only error that may reach it
as a failure is a bad signature (401). Every other FulfillmentError that
escapes a route is acknowledged with 200 and left to the logs and the audit
trail.

Usage:
    from fulfillment_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_200_OK, HTTP_401_UNAUTHORIZED

from fulfillment.models.errors import ErrorCode, FulfillmentError
from fulfillment.utils.logging import get_logger

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_401_UNAUTHORIZED,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode (200 unless explicitly mapped)."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_200_OK)


async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Convert a FulfillmentError to the webhook acknowledgement body.

    Args:
        request: The incoming request
        exc: The FulfillmentError exception

    Returns:
        401 with ``received: false`` for signature failures, otherwise 200.
    """
    status_code = get_http_status_for_error(exc.code)
    if status_code == HTTP_401_UNAUTHORIZED:
        logger.warning("Rejected delivery to %s: %s", request.url.path, exc.message)
        return JSONResponse(
            status_code=status_code,
            content={"received": False, "message": "Invalid signature"},
        )

    logger.error(
        "Delivery to %s failed with %s: %s",
        request.url.path,
        exc.code.value,
        exc.message,
    )
    return JSONResponse(status_code=status_code, content={"received": True})


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)  # type: ignore[arg-type]
