"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rampkit.anchors.base import AnchorError
from rampkit.anchors.factory import AnchorFactory
from rampkit.config import Settings, get_settings
from rampkit.customers.database import close_db, get_session_factory, init_db
from rampkit.customers.repository import CustomerRepository, SqlCustomerRepository
from rampkit.sep.client import SepAnchorClient
from rampkit.webhooks import WebhookLog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    settings: Settings = app.state.settings
    logger.info(f"Starting rampkit API ({settings.environment})")
    if isinstance(app.state.customer_repository, SqlCustomerRepository):
        await init_db()
    yield
    # Shutdown
    await close_db()
    http_client = app.state.anchor_factory.http_client
    if http_client is not None and not http_client.is_closed:
        await http_client.aclose()


async def anchor_error_handler(request: Request, exc: AnchorError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(
    factory: Optional[AnchorFactory] = None,
    settings: Optional[Settings] = None,
    webhook_log: Optional[WebhookLog] = None,
    customer_repository: Optional[CustomerRepository] = None,
    sep_client: Optional[SepAnchorClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or (factory.settings if factory is not None else get_settings())

    app = FastAPI(
        title="Rampkit API",
        description="Fiat on/off-ramp anchor proxy",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.anchor_factory = factory if factory is not None else AnchorFactory(settings)
    app.state.webhook_log = webhook_log if webhook_log is not None else WebhookLog()
    if customer_repository is None:
        customer_repository = SqlCustomerRepository(get_session_factory())
    app.state.customer_repository = customer_repository
    if sep_client is None:
        sep_client = SepAnchorClient(
            settings.testanchor_domain,
            settings.stellar_network_passphrase,
            http_client=app.state.anchor_factory.http_client,
            timeout=settings.http_timeout_seconds,
        )
    app.state.sep_client = sep_client

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AnchorError, anchor_error_handler)

    # Register routes
    from rampkit.api.routes import anchors, health, testanchor, webhooks

    app.include_router(health.router, tags=["Health"])
    # Before the provider router so "webhooks" is not taken as a provider id
    app.include_router(webhooks.router)
    app.include_router(anchors.router, tags=["Anchors"])
    app.include_router(testanchor.router)

    return app
