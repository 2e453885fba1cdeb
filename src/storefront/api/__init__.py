"""HTTP and WebSocket surface of the storefront."""

from fastapi import FastAPI
from protean import Domain

from storefront.api.errors import register_error_handlers
from storefront.api.inventory import router as inventory_router
from storefront.api.notifications import router as notifications_router
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.api.realtime import router as realtime_router
from storefront.services import Services

ROUTERS = (orders_router, payments_router, notifications_router, inventory_router, realtime_router)


def install(app: FastAPI, domain: Domain, services: Services, token_resolver=None) -> FastAPI:
    """Attach the routers, error handlers and shared state to ``app``."""
    app.state.domain = domain
    app.state.services = services
    app.state.token_resolver = token_resolver
    register_error_handlers(app)
    for router in ROUTERS:
        app.include_router(router)
    return app


__all__ = [
    "ROUTERS",
    "install",
    "inventory_router",
    "notifications_router",
    "orders_router",
    "payments_router",
    "realtime_router",
]
