"""
FastAPI Application Factory

Creates and configures the settlement API application.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
import structlog

from settlement.config import get_settings
from settlement.errors import SettlementError
from settlement.serving.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from settlement.serving.api.routes import (
    cart_router,
    checkout_router,
    fulfillment_router,
    health_router,
    purchases_router,
)

logger = structlog.get_logger(__name__)


async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    """Answer engine errors with their status code and a JSON body."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request rejected",
        path=request.url.path,
        status_code=exc.status_code,
        error_type=exc.error_type,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_api_app(lifespan: Optional[object] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        lifespan: Startup/shutdown handler that builds `app.state.environment`

    Returns:
        Configured FastAPI app instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Order Settlement API",
        description="Checkout, settlement and fulfillment for the storefront",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Add CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(SettlementError, settlement_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(cart_router, prefix="/api/v1/cart", tags=["Cart"])
    app.include_router(checkout_router, prefix="/api/v1/checkout", tags=["Checkout"])
    app.include_router(purchases_router, prefix="/api/v1/purchases", tags=["Purchases"])
    app.include_router(fulfillment_router, prefix="/api/v1/fulfillment", tags=["Fulfillment"])

    if settings.monitoring.enable_metrics:
        app.mount("/metrics", make_asgi_app())

    return app
