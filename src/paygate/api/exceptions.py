"""FastAPI exception handlers for gateway errors.

Maps the error taxonomy onto HTTP status codes:
- 400 Bad Request: webhook signature or payload rejected
- 402 Payment Required: the provider declined the request
- 404 Not Found: no ledger record
- 409 Conflict: ledger invariant or state-machine violation
- 502 Bad Gateway: provider failed server-side or returned an unknown status
- 503 Service Unavailable: provider not configured
- 504 Gateway Timeout: provider unreachable

Usage:
    from paygate.api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
    HTTP_504_GATEWAY_TIMEOUT,
)

from paygate.models.errors import (
    ErrorCode,
    PaymentGatewayError,
    ProviderError,
    user_message,
)
from paygate.utils.logging import get_logger
from paygate.utils.money import MoneyError

logger = get_logger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.CONFIGURATION: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.PROVIDER_REJECTED: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.PROVIDER_UNAVAILABLE: HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: HTTP_400_BAD_REQUEST,
    ErrorCode.MALFORMED_WEBHOOK_PAYLOAD: HTTP_400_BAD_REQUEST,
    ErrorCode.LEDGER_CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.RECORD_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.UNMAPPED_STATUS: HTTP_502_BAD_GATEWAY,
}


def get_http_status_for_error(exc: PaymentGatewayError) -> int:
    """HTTP status for a gateway error.

    Provider rejections are 402 when the provider itself answered 4xx and
    502 when it failed server-side.
    """
    if (
        isinstance(exc, ProviderError)
        and exc.code == ErrorCode.PROVIDER_REJECTED
        and exc.http_status is not None
        and exc.http_status >= 500
    ):
        return HTTP_502_BAD_GATEWAY
    return ERROR_CODE_TO_HTTP_STATUS.get(exc.code, HTTP_400_BAD_REQUEST)


async def gateway_error_handler(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    status_code = get_http_status_for_error(exc)
    if status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)

    detail = exc.to_detail()
    body = detail.model_dump(mode="json")
    body["user_message"] = user_message(exc)
    return JSONResponse(status_code=status_code, content=body)


async def money_error_handler(request: Request, exc: MoneyError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error_code": "ERR_AMOUNT", "message": str(exc)},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error_code": "ERR_INTERNAL", "message": "Internal error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(PaymentGatewayError, gateway_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(MoneyError, money_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
