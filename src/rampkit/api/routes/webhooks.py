"""Anchor webhook endpoint.

Events are verified and logged. They never change transaction state;
clients keep polling the provider for status.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from rampkit.api.dependencies import get_settings_dep, get_webhook_log
from rampkit.config import Settings
from rampkit.webhooks import WebhookEvent, WebhookLog, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/anchor/webhooks", tags=["Webhooks"])


@router.post("")
async def receive_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings_dep),
    webhook_log: WebhookLog = Depends(get_webhook_log),
):
    """Receive an anchor webhook event.

    1. Verifies the HMAC signature over the raw body (if a secret is set)
    2. Parses the event
    3. Appends it to the webhook log
    """
    body = await request.body()

    if not verify_webhook_signature(body, x_webhook_signature, settings.webhook_secret):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = WebhookEvent.model_validate(json.loads(body))
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    webhook_log.record(event)
    return {"received": True}


@router.get("")
async def list_webhooks(
    resource_id: Optional[str] = None,
    webhook_log: WebhookLog = Depends(get_webhook_log),
):
    """Received events, optionally for one transaction or customer id."""
    return [entry.model_dump() for entry in webhook_log.entries(resource_id)]
