from __future__ import annotations

import asyncio
import inspect
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Coroutine, cast

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import Response

from app.api.errors import ConflictError
from app.api.http_setup import register_exception_handlers, register_http_middleware
from tests.auth_fixtures import make_config

LOGGER = logging.getLogger(__name__)


def _app(tmp_path: Path) -> FastAPI:
    app = FastAPI()
    register_http_middleware(app, config=make_config(tmp_path, request_max_bytes=8), logger=LOGGER)
    register_exception_handlers(app, logger=LOGGER)
    return app


def _request(
    path: str,
    method: str = "GET",
    headers: list[tuple[bytes, bytes]] | None = None,
    body: bytes = b"",
) -> Request:
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": b"",
        "root_path": "",
        "headers": headers or [],
        "client": ("127.0.0.1", 1234),
        "server": ("testserver", 80),
    }

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


def _dispatch_by_name(app: FastAPI, name: str):
    for middleware in app.user_middleware:
        dispatch = middleware.kwargs.get("dispatch")
        if callable(dispatch) and getattr(dispatch, "__name__", "") == name:
            return dispatch
    raise AssertionError(f"Dispatch {name!r} not found")


def _resolve_response(result: Response | Awaitable[Response]) -> Response:
    if inspect.iscoroutine(result):
        return asyncio.run(cast(Coroutine[Any, Any, Response], result))
    return cast(Response, result)


def test_http_setup_adds_security_headers_and_request_id(tmp_path: Path) -> None:
    dispatch = _dispatch_by_name(_app(tmp_path), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"req-123")])

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"


def test_http_setup_rejects_large_request_before_handler(tmp_path: Path) -> None:
    dispatch = _dispatch_by_name(_app(tmp_path), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"20")])

    async def call_next(_request: Request) -> Response:
        raise AssertionError("handler must not run")

    response = asyncio.run(dispatch(request, call_next))
    assert response.status_code == 413
    assert json.loads(response.body)["error_code"] == "REQUEST_TOO_LARGE"


def test_http_setup_serializes_api_error_envelope(tmp_path: Path) -> None:
    handler = _app(tmp_path).exception_handlers[HTTPException]

    response: Response = _resolve_response(
        handler(_request("/register"), ConflictError("Email already registered"))
    )

    assert response.status_code == 409
    assert json.loads(response.body) == {
        "success": False,
        "error_code": "CONFLICT",
        "message": "Email already registered",
    }


def test_http_setup_hides_unexpected_exception_details(tmp_path: Path) -> None:
    handler = _app(tmp_path).exception_handlers[Exception]

    response: Response = _resolve_response(
        handler(_request("/boom"), RuntimeError("db password is hunter2"))
    )

    body = json.loads(response.body)
    assert response.status_code == 500
    assert body["error_code"] == "INTERNAL_SERVER_ERROR"
    assert "hunter2" not in response.body.decode("utf-8")


def test_http_setup_maps_validation_errors_to_400(tmp_path: Path) -> None:
    handler = _app(tmp_path).exception_handlers[RequestValidationError]
    error = RequestValidationError(
        [{"loc": ("body", "email"), "msg": "String should match pattern", "type": "string_pattern_mismatch"}]
    )

    response: Response = _resolve_response(handler(_request("/validation"), error))

    body = json.loads(response.body)
    assert response.status_code == 400
    assert body["error_code"] == "VALIDATION_ERROR"
    assert body["message"] == "email: String should match pattern"


def test_http_setup_replaces_unsafe_request_id(tmp_path: Path) -> None:
    dispatch = _dispatch_by_name(_app(tmp_path), "request_logging_middleware")
    request = _request("/ok", headers=[(b"x-request-id", b"bad id\nwith newline")])

    async def call_next(_request: Request) -> Response:
        return Response(content="ok", status_code=200)

    response = asyncio.run(dispatch(request, call_next))
    assert response.headers["X-Request-ID"] != "bad id\nwith newline"
    assert len(response.headers["X-Request-ID"]) == 32


def test_http_setup_measures_bodies_without_content_length(tmp_path: Path) -> None:
    dispatch = _dispatch_by_name(_app(tmp_path), "request_size_limit_middleware")
    request = _request("/webhook", method="POST", body=b"0123456789")

    async def call_next(_request: Request) -> Response:
        raise AssertionError("handler must not run")

    response = asyncio.run(dispatch(request, call_next))
    assert response.status_code == 413


def test_http_setup_rejects_malformed_content_length(tmp_path: Path) -> None:
    dispatch = _dispatch_by_name(_app(tmp_path), "request_size_limit_middleware")
    request = _request("/echo", method="POST", headers=[(b"content-length", b"abc")])

    async def call_next(_request: Request) -> Response:
        raise AssertionError("handler must not run")

    response = asyncio.run(dispatch(request, call_next))
    assert response.status_code == 400
