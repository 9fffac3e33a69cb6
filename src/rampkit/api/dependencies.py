"""FastAPI dependencies."""

from fastapi import HTTPException, Request

from rampkit.anchors.base import Anchor
from rampkit.anchors.factory import AnchorFactory
from rampkit.config import Settings
from rampkit.customers.repository import CustomerRepository
from rampkit.sep.client import SepAnchorClient
from rampkit.webhooks import WebhookLog


def get_factory(request: Request) -> AnchorFactory:
    return request.app.state.anchor_factory


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_webhook_log(request: Request) -> WebhookLog:
    return request.app.state.webhook_log


def get_anchor(provider: str, request: Request) -> Anchor:
    """Resolve the ``{provider}`` path parameter to a client."""
    factory = get_factory(request)
    if not factory.is_valid_provider(provider):
        raise HTTPException(status_code=400, detail=f"Invalid provider: {provider}")
    return factory.create(provider)


def get_customer_repository(request: Request) -> CustomerRepository:
    return request.app.state.customer_repository


def get_sep_client(request: Request) -> SepAnchorClient:
    return request.app.state.sep_client
