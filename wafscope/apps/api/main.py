from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wafscope.apps.api.errors import (
    http_exception_handler,
    note_key_exception_handler,
    notes_store_exception_handler,
    resource_api_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from wafscope.apps.api.response import API_VERSION
from wafscope.apps.api.routes.health import router as health_router
from wafscope.apps.api.routes.notes import legacy_router as notes_legacy_router
from wafscope.apps.api.routes.notes import router as notes_router
from wafscope.apps.api.routes.scan import router as scan_router
from wafscope.core.config import get_settings
from wafscope.core.errors import NoteKeyError, NotesStoreError, ResourceApiError
from wafscope.core.logging import configure_logging
from wafscope.services.telemetry import record_request


_LEGACY_SUNSET_DAYS = 90
_LEGACY_EXEMPT_PREFIXES = (
    "/v1",
    "/docs",
    "/openapi.json",
    "/redoc",
)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="wafscope API", version=API_VERSION)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        # The unversioned notes alias stays for the legacy front end but is deprecated.
        if not request.url.path.startswith(_LEGACY_EXEMPT_PREFIXES):
            sunset_at = datetime.now(timezone.utc) + timedelta(days=_LEGACY_SUNSET_DAYS)
            response.headers["Deprecation"] = "true"
            response.headers["Sunset"] = format_datetime(sunset_at)
            response.headers["Link"] = '</v1/docs>; rel="successor-version"'
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(NoteKeyError, note_key_exception_handler)
    app.add_exception_handler(NotesStoreError, notes_store_exception_handler)
    app.add_exception_handler(ResourceApiError, resource_api_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(scan_router, prefix=f"/{API_VERSION}")
    app.include_router(notes_router, prefix=f"/{API_VERSION}")
    app.include_router(notes_legacy_router)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title=f"{settings.app_name} API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    return app


app = create_app()
