"""Application errors and the JSON response envelope shared by every route."""
import logging
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Domain error carrying a stable error code and HTTP status."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, code: Optional[str] = None,
                 status_code: Optional[int] = None, field: Optional[str] = None,
                 data: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.field = field
        self.data = data


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class AuthorizationError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


def _request_id() -> str:
    return f"req_{uuid.uuid4().hex[:16]}"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(data: Any = None, **extra) -> dict:
    body = {
        "success": True,
        "data": data,
        "requestId": _request_id(),
        "timestamp": _timestamp(),
    }
    body.update(extra)
    return body


def error_response(code: str, message: str, status_code: int,
                   field: Optional[str] = None, data: Any = None) -> JSONResponse:
    error = {"code": code, "message": message}
    if field:
        error["field"] = field
    if data is not None:
        error["data"] = data
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "requestId": _request_id(),
            "timestamp": _timestamp(),
        },
    )


def paginate(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


_HTTP_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def register_exception_handlers(app: FastAPI):
    """Always return the JSON error envelope (never plain text)."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        return error_response(exc.code, exc.message, exc.status_code, exc.field, exc.data)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(part) for part in first.get("loc", []) if part not in ("body", "query", "path")]
        return error_response(
            "VALIDATION_ERROR",
            first.get("msg", "Invalid request data"),
            400,
            field=".".join(loc) or None,
            data=[{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(code, str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
        return error_response("INTERNAL_ERROR", "Internal server error", 500)
