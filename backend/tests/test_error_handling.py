# ruff: noqa: INP001
"""Request-id middleware and JSON error envelope tests."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import Response

from agentflow.core import error_handling
from agentflow.core.error_handling import (
    REQUEST_ID_HEADER,
    _error_payload,
    _get_request_id,
    _http_exception_exception_handler,
    _request_validation_exception_handler,
    _response_validation_exception_handler,
    install_error_handling,
)


class _Named(BaseModel):
    name: str = Field(min_length=1)


def _app() -> FastAPI:
    app = FastAPI()
    install_error_handling(app)

    @app.get("/needs-int")
    def needs_int(limit: int) -> dict[str, int]:
        return {"limit": limit}

    @app.put("/needs-object")
    def needs_object(payload: _Named) -> dict[str, str]:
        return {"name": payload.name}

    @app.get("/missing")
    def missing() -> None:
        raise HTTPException(status_code=404, detail="Agent not found")

    @app.get("/boom")
    def boom() -> None:
        raise RuntimeError("boom")

    @app.get("/bad-response", response_model=_Named)
    def bad_response() -> dict[str, str]:
        return {"name": ""}

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


def _assert_request_id(resp: httpx.Response) -> str:
    body = resp.json()
    request_id = body.get("request_id")
    assert isinstance(request_id, str)
    assert request_id
    assert resp.headers.get(REQUEST_ID_HEADER) == request_id
    return request_id


def test_validation_error_carries_request_id() -> None:
    resp = TestClient(_app()).get("/needs-int?limit=abc")

    assert resp.status_code == 422
    assert isinstance(resp.json()["detail"], list)
    _assert_request_id(resp)


def test_non_json_body_is_a_422_not_a_500() -> None:
    client = TestClient(_app(), raise_server_exceptions=False)
    resp = client.put(
        "/needs-object",
        content=b"plain-text-body",
        headers={"content-type": "text/plain"},
    )

    assert resp.status_code == 422
    _assert_request_id(resp)


def test_http_exception_keeps_detail() -> None:
    resp = TestClient(_app()).get("/missing")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Agent not found"
    _assert_request_id(resp)


@pytest.mark.parametrize("path", ["/boom", "/bad-response"])
def test_server_errors_are_masked(path: str) -> None:
    resp = TestClient(_app(), raise_server_exceptions=False).get(path)

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Internal Server Error"
    _assert_request_id(resp)


def test_client_request_id_is_trimmed_and_echoed() -> None:
    resp = TestClient(_app()).get("/needs-int?limit=x", headers={REQUEST_ID_HEADER: "  req-42  "})

    assert _assert_request_id(resp) == "req-42"


def test_oversized_client_request_id_is_replaced() -> None:
    resp = TestClient(_app()).get("/needs-int?limit=x", headers={REQUEST_ID_HEADER: "r" * 200})

    assert _assert_request_id(resp) != "r" * 200


def test_slow_request_logs_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    warnings: list[tuple[str, dict[str, object]]] = []

    def _capture(message: str, *_args: object, **kwargs: object) -> None:
        extra = kwargs.get("extra")
        warnings.append((message, extra if isinstance(extra, dict) else {}))

    ticks = iter((10.0, 10.5))
    monkeypatch.setattr(error_handling.settings, "request_log_slow_ms", 100)
    monkeypatch.setattr(error_handling, "perf_counter", lambda: next(ticks))
    monkeypatch.setattr(error_handling.logger, "warning", _capture)

    resp = TestClient(_app()).get("/needs-int?limit=1")

    assert resp.status_code == 200
    slow = [extra for message, extra in warnings if message == "http.request.slow"]
    assert slow
    assert slow[0]["slow_threshold_ms"] == 100
    assert slow[0]["path"] == "/needs-int"


def test_health_probe_is_not_logged_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    logged: list[str] = []
    monkeypatch.setattr(error_handling.settings, "request_log_include_health", False)
    monkeypatch.setattr(
        error_handling.logger,
        "info",
        lambda message, *_a, **_k: logged.append(message),
    )

    resp = TestClient(_app()).get("/healthz")

    assert resp.status_code == 200
    assert REQUEST_ID_HEADER in resp.headers
    assert "http.request.complete" not in logged


def test_get_request_id_ignores_missing_or_invalid_state() -> None:
    for state in ({}, {"request_id": 123}, {"request_id": ""}):
        request = Request({"type": "http", "headers": [], "state": state})
        assert _get_request_id(request) is None


def test_error_payload_omits_missing_request_id() -> None:
    assert _error_payload(detail="x", request_id=None) == {"detail": "x"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("handler", "expected"),
    [
        (_request_validation_exception_handler, "Expected RequestValidationError"),
        (_response_validation_exception_handler, "Expected ResponseValidationError"),
        (_http_exception_exception_handler, "Expected StarletteHTTPException"),
    ],
)
async def test_handlers_reject_foreign_exceptions(
    handler: Callable[[Request, Exception], Awaitable[Response]],
    expected: str,
) -> None:
    request = Request({"type": "http", "headers": [], "state": {}})
    with pytest.raises(TypeError, match=expected):
        await handler(request, Exception("x"))


def test_json_safe_decodes_binary_and_stringifies_the_rest() -> None:
    class Opaque:
        def __str__(self) -> str:
            return "opaque"

    assert error_handling._json_safe(b"\xff") == "\ufffd"
    assert error_handling._json_safe(memoryview(b"ok")) == "ok"
    assert error_handling._json_safe({"k": (1, Opaque())}) == {"k": [1, "opaque"]}
