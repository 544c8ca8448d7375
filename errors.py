"""
Exception handlers that turn every failure into the API's error shape:

    {"success": false, "message": "...", "errors": [{"field": ..., "message": ...}]}
"""
import logging
import re
import traceback

from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_LOC_SOURCES = {"body", "query", "path", "header", "cookie"}


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    content = {"success": False, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def _field_errors(exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in _LOC_SOURCES]
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        errors.append({"field": ".".join(loc) or "body", "message": msg})
    return errors


def _duplicate_field(exc: DuplicateKeyError) -> str:
    details = exc.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        return next(iter(key_value))
    match = re.search(r"index: (\w+?)_\d", str(exc))
    return match.group(1) if match else "value"


def install_error_handlers(app: FastAPI, production: bool) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        response = error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return error_response(400, "Validation failed", errors=_field_errors(exc))

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key(request: Request, exc: DuplicateKeyError):
        return error_response(400, f"{_duplicate_field(exc)} already exists")

    @app.exception_handler(InvalidId)
    async def invalid_id(request: Request, exc: InvalidId):
        return error_response(400, "Invalid ID format")

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        extra = {} if production else {"error": "".join(traceback.format_exception(exc))}
        return error_response(500, "Internal Server Error", **extra)
