import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import expose_error_detail
from app.core.exceptions import JournalError

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agricjournal")


def error_envelope(message: str, error: Any = None) -> dict[str, Any]:
    """
    统一错误响应: {success: false, message, error}

    中文注释: 生产环境（APP_ENV=production）不返回 error 字段，避免泄露内部细节。
    """
    body: dict[str, Any] = {"success": False, "message": message}
    if error is not None and expose_error_detail():
        body["error"] = jsonable_encoder(error, custom_encoder={BaseException: str})
    return body


def success_envelope(data: Any = None, message: Optional[str] = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return body


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件
    兜底处理未被 exception handler 接住的异常，并记录请求耗时
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                "Method: %s Path: %s Status: %s Time: %.4fs",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )
            return response
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content=error_envelope(str(exc.detail)))
        except Exception as e:
            logger.error("Unhandled Exception: %s", e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content=error_envelope("Internal server error", str(e)),
            )


async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.message, exc.detail if exc.detail is not None else exc.message),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: e.get(k) for k in ("type", "loc", "msg")} for e in exc.errors()]
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in (first.get("loc") or ()) if p not in ("body", "query", "path", "form"))
    message = f"Invalid value for {loc}: {first.get('msg')}" if loc else "Invalid request"
    return JSONResponse(status_code=400, content=error_envelope(message, errors))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(JournalError, journal_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
