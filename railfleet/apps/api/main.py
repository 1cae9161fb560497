from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from railfleet.apps.api.errors import (
    http_exception_handler,
    railfleet_error_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from railfleet.apps.api.routes.aggregates import router as aggregates_router
from railfleet.apps.api.routes.audit import router as audit_router
from railfleet.apps.api.routes.chat import router as chat_router
from railfleet.apps.api.routes.health import router as health_router
from railfleet.apps.api.routes.me import router as me_router
from railfleet.apps.api.routes.tenant_mappings import router as tenant_mappings_router
from railfleet.apps.api.routes.tenants import router as tenants_router
from railfleet.apps.api.routes.trains import router as trains_router
from railfleet.core.config import get_settings
from railfleet.core.errors import RailfleetError
from railfleet.core.logging import configure_logging
from railfleet.persistence.guards import TenantPredicateError
from railfleet.services.chat import ChatGateway
from railfleet.services.tenancy import TenantResolver


logger = logging.getLogger(__name__)


def create_app(
    *,
    tenant_resolver: TenantResolver | None = None,
    chat_gateway: ChatGateway | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="RailFleet API")

    # Process-wide collaborators; tests inject their own.
    app.state.tenant_resolver = tenant_resolver or TenantResolver.from_settings(settings)
    app.state.chat_gateway = chat_gateway or ChatGateway.from_settings(settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    @app.exception_handler(RailfleetError)
    async def _railfleet_error_handler(request: Request, exc: RailfleetError):
        return await railfleet_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(me_router)
    app.include_router(trains_router)
    app.include_router(aggregates_router)
    app.include_router(audit_router)
    app.include_router(tenants_router)
    app.include_router(tenant_mappings_router)
    app.include_router(chat_router)
    return app


app = create_app()
