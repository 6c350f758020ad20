from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wafscope.apps.api.response import error_response, is_versioned_request
from wafscope.core.errors import (
    InvalidEntityTypeError,
    NoteKeyError,
    NotesStoreError,
    ResourceApiError,
    ResourceAuthError,
)


logger = logging.getLogger(__name__)


_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException details are either {"code", "message", ...} or a plain string.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(
            content={"detail": {"code": code, "message": message}}, status_code=status_code
        )
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers both FastAPI and Starlette HTTPException.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": errors}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
    )
    return JSONResponse(content=payload, status_code=422)


async def note_key_exception_handler(request: Request, exc: NoteKeyError) -> JSONResponse:
    code = "INVALID_ENTITY_TYPE" if isinstance(exc, InvalidEntityTypeError) else "MISSING_KEY_FIELDS"
    return _error(request, 400, code, str(exc))


async def notes_store_exception_handler(request: Request, exc: NotesStoreError) -> JSONResponse:
    logger.warning("notes_store_error path=%s", request.url.path, exc_info=exc)
    return _error(request, 502, "NOTES_STORE_ERROR", "Notes store request failed")


async def resource_api_exception_handler(request: Request, exc: ResourceApiError) -> JSONResponse:
    logger.warning("resource_api_error path=%s", request.url.path, exc_info=exc)
    if isinstance(exc, ResourceAuthError):
        return _error(request, 403, "RESOURCE_API_FORBIDDEN", "Resource API denied access")
    return _error(request, 502, "RESOURCE_API_ERROR", "Resource API request failed")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # No stack traces leave the process.
    logger.error("unhandled_exception path=%s", request.url.path, exc_info=exc)
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
