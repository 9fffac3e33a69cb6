"""Anchor webhook verification and event log.

Webhook events are notifications only. Transaction status is always taken
from polling the provider; the log here records what arrived.
"""

import hashlib
import hmac
import logging
from collections import deque
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from rampkit.utils.time import utcnow_iso

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"


class WebhookEventType(str, Enum):
    ONRAMP_COMPLETED = "onramp.completed"
    ONRAMP_FAILED = "onramp.failed"
    OFFRAMP_COMPLETED = "offramp.completed"
    OFFRAMP_FAILED = "offramp.failed"
    KYC_APPROVED = "kyc.approved"
    KYC_REJECTED = "kyc.rejected"


class WebhookData(BaseModel):
    model_config = {"extra": "allow"}

    id: str
    status: str = ""


class WebhookEvent(BaseModel):
    """Webhook payload sent by an anchor."""

    event: str
    data: WebhookData
    timestamp: str = ""

    @property
    def event_type(self) -> Optional[WebhookEventType]:
        try:
            return WebhookEventType(self.event)
        except ValueError:
            return None


class LoggedWebhook(BaseModel):
    event: WebhookEvent
    received_at: str = Field(default_factory=utcnow_iso)


def verify_webhook_signature(
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str],
) -> bool:
    """Verify a hex HMAC-SHA256 signature over the raw body.

    Verification is skipped when no secret is configured.
    """
    if not secret:
        logger.warning("Webhook secret not configured, skipping signature verification")
        return True
    if not signature:
        return False

    # Remove any prefix like "sha256="
    if "=" in signature:
        signature = signature.split("=", 1)[1]

    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.lower())


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a payload, as anchors send it."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class WebhookLog:
    """Bounded in-memory log of received webhook events."""

    def __init__(self, max_entries: int = 500):
        self._entries: deque[LoggedWebhook] = deque(maxlen=max_entries)

    def record(self, event: WebhookEvent) -> LoggedWebhook:
        entry = LoggedWebhook(event=event)
        self._entries.append(entry)

        event_type = event.event_type
        if event_type is None:
            logger.info(f"Unknown webhook event: {event.event}")
        elif event_type in (WebhookEventType.ONRAMP_FAILED, WebhookEventType.OFFRAMP_FAILED):
            logger.warning(f"Webhook {event.event} for {event.data.id}")
        else:
            logger.info(f"Webhook {event.event} for {event.data.id} ({event.data.status})")
        return entry

    def entries(self, resource_id: Optional[str] = None) -> list[LoggedWebhook]:
        if resource_id is None:
            return list(self._entries)
        return [e for e in self._entries if e.event.data.id == resource_id]

    def latest(self, resource_id: str) -> Optional[WebhookEvent]:
        for entry in reversed(self._entries):
            if entry.event.data.id == resource_id:
                return entry.event
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [entry.model_dump() for entry in self._entries]
