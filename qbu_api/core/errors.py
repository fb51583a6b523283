from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    """
    HTTPException に安定したエラーコードを持たせたもの。
    クライアントには {"ok": false, "error": <code>, "message": <text>} で返す。
    """

    def __init__(self, status_code: int, error: str, message: str = "", **extra: Any) -> None:
        super().__init__(status_code=status_code, detail=message or error)
        self.error = error
        self.message = message
        self.extra = extra


def bad_request(error: str, message: str = "", **extra: Any) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, error, message, **extra)


def server_error(error: str, message: str = "") -> ApiError:
    return ApiError(status.HTTP_500_INTERNAL_SERVER_ERROR, error, message)


def not_configured(what: str, message: str = "") -> ApiError:
    return ApiError(status.HTTP_501_NOT_IMPLEMENTED, f"{what}_not_configured", message)


def _body(error: str, message: Optional[str], extra: Optional[dict] = None) -> dict[str, Any]:
    out: dict[str, Any] = {"ok": False, "error": error}
    if message:
        out["message"] = message
    if extra:
        out.update(extra)
    return out


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_body(exc.error, exc.message, exc.extra))


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # 401/403/404 など素の HTTPException も同じ形に揃える
    code = {
        status.HTTP_401_UNAUTHORIZED: "unauthorized",
        status.HTTP_403_FORBIDDEN: "forbidden",
        status.HTTP_404_NOT_FOUND: "not_found",
    }.get(exc.status_code, "error")
    detail = exc.detail if isinstance(exc.detail, str) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(code, detail),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # malformed input は 422 ではなく 400 bad_request
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    msg = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg") or "invalid request")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_body("bad_request", msg))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
