"""Exception handlers producing the {success, status, message} error envelope."""
import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursepay.config import settings
from coursepay.core.exceptions import AppError, ErrorKind

logger = logging.getLogger(__name__)


def error_body(status_code: int, message: str, exc: BaseException | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "status": status_code, "message": message}
    if exc is not None and not settings.is_production:
        body["stack"] = "".join(traceback.format_exception(exc))
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind.name)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.message, exc),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else ErrorKind.VALIDATION.default_message
    logger.warning("%s %s rejected: %s", request.method, request.url.path, message)
    return JSONResponse(status_code=400, content=error_body(400, message))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    kind = ErrorKind.INTERNAL
    return JSONResponse(
        status_code=kind.status_code,
        content=error_body(kind.status_code, kind.default_message, exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
