"""HTTP middleware and exception handler wiring for FastAPI apps."""

from __future__ import annotations

import re
import time
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.contracts import ApiErrorResponse
from app.api.errors import ApiErrorCode, to_error_payload
from app.core.config import AppConfig
from app.core.logging import set_correlation_id

# Auth responses carry cookies and profile data; nothing may be cached or framed.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

_CORRELATION_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _error_response(
    status_code: int,
    error_code: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiErrorResponse(error_code=error_code, message=message).model_dump(),
        headers=headers,
    )


def _request_extra(request: Request, status_code: int) -> dict[str, Any]:
    return {
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
    }


def _correlation_id(request: Request) -> str:
    """Reuse a caller-supplied request id only when it is safe to echo into logs."""
    for header in ("x-request-id", "x-correlation-id"):
        candidate = request.headers.get(header, "").strip()
        if candidate and _CORRELATION_ID_RE.match(candidate):
            return candidate
    return uuid.uuid4().hex


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg") or "Invalid value")
    return f"{location}: {message}" if location else message


def register_http_middleware(app: FastAPI, *, config: AppConfig, logger: Any) -> None:
    """Attach body-size limits, correlation ids, security headers and access logs."""
    max_bytes = config.security.request_max_bytes
    too_large_message = f"Request size exceeds configured limit ({max_bytes} bytes)."

    @app.middleware("http")
    async def request_size_limit_middleware(request: Request, call_next):
        content_length = request.headers.get("content-length")
        try:
            declared = int(content_length) if content_length else 0
        except ValueError:
            return _error_response(400, ApiErrorCode.BAD_REQUEST, "Invalid Content-Length header")
        if declared > max_bytes:
            return _error_response(413, ApiErrorCode.REQUEST_TOO_LARGE, too_large_message)

        if content_length is None and request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            # Chunked uploads carry no length; buffer once so downstream reads see the cached body.
            body = await request.body()
            if len(body) > max_bytes:
                return _error_response(413, ApiErrorCode.REQUEST_TOO_LARGE, too_large_message)
        return await call_next(request)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        correlation_id = _correlation_id(request)
        set_correlation_id(correlation_id)
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        extra = _request_extra(request, response.status_code)
        extra["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        logger.info("request_completed", extra=extra)
        return response


def register_exception_handlers(app: FastAPI, *, logger: Any) -> None:
    """Attach exception handlers that return the ``success: false`` envelope."""

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        payload = to_error_payload(exc.detail, exc.status_code)
        logger.warning(
            "http_exception %s",
            payload["error_code"],
            extra=_request_extra(request, exc.status_code),
        )
        return _error_response(
            exc.status_code,
            payload["error_code"],
            payload["message"],
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Pydantic error dicts echo the submitted input, so only the first loc/msg is returned.
        logger.warning("validation_exception", extra=_request_extra(request, 400))
        return _error_response(
            400, ApiErrorCode.VALIDATION_ERROR, _first_validation_message(exc)
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unexpected_exception", extra=_request_extra(request, 500))
        return _error_response(500, ApiErrorCode.INTERNAL_SERVER_ERROR, "Internal server error")
