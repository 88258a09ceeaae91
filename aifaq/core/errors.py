"""
Error taxonomy and the JSON error contract.

Every failure leaves the API as

    {"error": {"code", "message", "request_id", "retryable"}, "detail": message}

with the request id echoed in ``x-request-id``. Retryable errors also carry
``Retry-After`` so the embedded admin UI can back off before retrying.
"""

import logging
from typing import List, Optional, Sequence
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from aifaq.core.logging import get_request_id

logger = logging.getLogger("aifaq.errors")

RETRY_AFTER_SECONDS = 5


class AppError(Exception):
    code = "app_error"
    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class BillingConfigurationError(AppError):
    """Operation rejected before any external call (missing credential, free-plan charge)."""
    code = "billing_configuration"
    status_code = 400


class BillingProviderError(AppError):
    """The external billing provider failed the call."""
    code = "billing_provider_error"
    status_code = 502


class BillingUserError(BillingProviderError):
    """The provider answered with one or more userErrors."""
    code = "billing_user_error"

    def __init__(self, errors: Sequence, **kwargs):
        self.errors: List = list(errors)
        message = ", ".join(getattr(e, "message", str(e)) for e in self.errors) or "Billing provider rejected the request"
        super().__init__(message, **kwargs)


class BillingTransportError(BillingProviderError):
    """Timeout or network failure talking to the provider. Safe to retry."""
    code = "billing_unavailable"
    status_code = 503
    retryable = True


class StorefrontError(AppError):
    code = "storefront_error"
    status_code = 502


class GenerationError(AppError):
    code = "generation_failed"
    status_code = 502


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(request: Request, status: int, code: str, message: str, retryable: bool = False) -> JSONResponse:
    rid = _request_id(request)
    headers = {"x-request-id": rid}
    if retryable:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return JSONResponse(
        status_code=status,
        content={
            "error": {"code": code, "message": message, "request_id": rid, "retryable": retryable},
            "detail": message,
        },
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "app.error",
        extra={"error_code": exc.code, "error_message": exc.message, "status": exc.status_code, "path": request.url.path},
    )
    return error_response(request, exc.status_code, exc.code, exc.message, exc.retryable)


async def http_error_handler(request: Request, exc: HTTPException):
    code = {401: "unauthorized", 404: "not_found"}.get(exc.status_code, "http_error")
    logger.warning("http.error", extra={"error_code": code, "status": exc.status_code, "path": request.url.path})
    return error_response(request, exc.status_code, code, str(exc.detail or "HTTP error"))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled.exception", exc_info=exc, extra={"error_code": "internal_error", "path": request.url.path})
    return error_response(request, 500, "internal_error", "Unexpected error")
