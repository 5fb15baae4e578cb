"""FastAPI server for the billing <-> D365 integration.

Main entry point for the on-demand HTTP surface.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import customer_sync, health, invoice_sync
from core import __version__
from core.config import IntegrationSettings, get_settings
from core.observability.logging import configure_logging_from_settings, get_logger
from customer_sync.service import (
    CustomerServiceFactory,
    customer_service_factory_from_settings,
    open_customer_sync_service,
)
from invoice_sync.service import (
    EngineFactory,
    engine_factory_from_settings,
    open_invoice_sync_engine,
)


logger = get_logger("api.server")


def _engine_from_env():
    return open_invoice_sync_engine(get_settings())


def _customer_service_from_env():
    return open_customer_sync_service(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = app.state.settings
    if settings is not None:
        configure_logging_from_settings(settings)
        logger.info("Invoice sync API starting up...", extra_fields=settings.redacted())
    else:
        logger.info("Invoice sync API starting up (settings load on first request)...")

    yield

    logger.info("Invoice sync API shutting down...")


def create_app(
    settings: Optional[IntegrationSettings] = None,
    engine_factory: Optional[EngineFactory] = None,
    customer_service_factory: Optional[CustomerServiceFactory] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Integration settings; loaded from the environment on first
            request when omitted
        engine_factory: Opens an InvoiceSyncEngine per request
        customer_service_factory: Opens a CustomerSyncService per request
    """
    app = FastAPI(
        title="Invoice Sync API",
        description="On-demand billing -> D365 invoice sync and D365 -> billing customer sync",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    if engine_factory is None:
        engine_factory = engine_factory_from_settings(settings) if settings else _engine_from_env
    if customer_service_factory is None:
        customer_service_factory = (
            customer_service_factory_from_settings(settings) if settings else _customer_service_from_env
        )

    app.state.settings = settings
    app.state.engine_factory = engine_factory
    app.state.customer_service_factory = customer_service_factory

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(invoice_sync.router, tags=["Invoice Sync"])
    app.include_router(customer_sync.router, tags=["Customer Sync"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
