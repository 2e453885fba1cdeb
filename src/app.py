"""Storefront FastAPI application.

Single-domain web server. Writes are processed synchronously as protean
commands; background sweeps run for the lifetime of the app.

Usage:
    uvicorn app:app --host 0.0.0.0 --port 8000 --reload
"""

import os
from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront import api
from storefront.domain import storefront
from storefront.services import Services, build_services
from storefront.sweeps import SweepRunner
from storefront.utils.logging import bind_request_context, clear_request_context, configure_logging

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# PROTEAN_ENV selects the domain.toml overlay ("production" -> PostgreSQL).
storefront.init()

logger = structlog.get_logger(__name__)


def _sweeps_enabled() -> bool:
    return os.getenv("STOREFRONT_SWEEPS", "on").lower() not in ("0", "off", "false", "no")


def create_app(services: Services | None = None, run_sweeps: bool | None = None) -> FastAPI:
    with storefront.domain_context():
        services = services or build_services()
    run_sweeps = _sweeps_enabled() if run_sweeps is None else run_sweeps

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runner = SweepRunner(storefront, services) if run_sweeps else None
        if runner:
            runner.start()
        logger.info("Storefront API started", sweeps=run_sweeps, providers=services.payments.supported_providers())
        yield
        if runner:
            await runner.stop()
        services.notifications.shutdown()
        logger.info("Storefront API stopped")

    app = FastAPI(
        title="Storefront API",
        description="Orders, stock, payments and notifications",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        """Bind request-scoped log context and push the domain context."""
        clear_request_context()
        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
        try:
            with storefront.domain_context():
                response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-Id"] = request_id
        return response

    api.install(app, storefront, services)

    # -----------------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        return JSONResponse(
            content={
                "status": "ok",
                "domain": storefront.name,
                "providers": services.payments.supported_providers(),
                "connected_users": len(services.connections.connected_users()),
            }
        )

    return app


configure_logging()
app = create_app()
