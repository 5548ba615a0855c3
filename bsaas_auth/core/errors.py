from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from bsaas_auth.services.errors import AuthError

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
    501: "not_configured",
}

DEFAULT_RETRY_AFTER = 60


def status_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the ``{code, message, data, details}`` envelope every failure shares."""
    if details is None:
        details = {}
    elif isinstance(details, list):
        details = {"errors": details}
    elif not isinstance(details, dict):
        details = {"detail": str(details)}
    payload = {"code": code, "message": message, "data": None, "details": details}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload), headers=headers)


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("auth_error code=%s path=%s", exc.code, request.url.path)
    return error_response(exc.status_code, exc.code, exc.message, exc.details, exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = STATUS_CODES.get(exc.status_code, "http_error")
    message = status_phrase(exc.status_code)
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or code
        message = exc.detail.get("message") or message
    elif isinstance(exc.detail, str):
        message = exc.detail
    return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))


def _describe_first_error(errors: list[dict]) -> str:
    if not errors:
        return "Validation failed"
    first = errors[0] or {}
    location = [str(part) for part in first.get("loc") or [] if part not in {"body", "query", "path"}]
    text = first.get("msg") or "Validation failed"
    return f"{'.'.join(location)}: {text}" if location else str(text)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    # Only loc/msg/type survive; the submitted input may hold a password or token.
    safe_errors = [{"loc": err.get("loc"), "msg": err.get("msg"), "type": err.get("type")} for err in errors]
    return error_response(422, "validation_error", _describe_first_error(errors), {"errors": safe_errors})


def _retry_after_seconds(exc: RateLimitExceeded) -> int:
    item = getattr(getattr(exc, "limit", None), "limit", None)
    if item is not None and hasattr(item, "get_expiry"):
        return max(1, int(item.get_expiry()))
    return DEFAULT_RETRY_AFTER


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = _retry_after_seconds(exc)
    logger.info("rate_limited path=%s", request.url.path)
    return error_response(
        429,
        "rate_limited",
        "Too many attempts, try again later",
        {"retry_after": retry_after},
        {"Retry-After": str(retry_after)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
