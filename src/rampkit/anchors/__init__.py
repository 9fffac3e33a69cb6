"""Anchor provider clients and the shared provider interface."""

from rampkit.anchors.base import Anchor, AnchorError, AnchorExtensions
from rampkit.anchors.capabilities import (
    ANCHOR_CAPABILITIES,
    AnchorCapabilities,
    KycFlow,
    build_quote_customer_id,
    get_capabilities,
    looks_like_provider_customer_id,
)
from rampkit.anchors.factory import SUPPORTED_PROVIDERS, AnchorFactory

__all__ = [
    "ANCHOR_CAPABILITIES",
    "Anchor",
    "AnchorCapabilities",
    "AnchorError",
    "AnchorExtensions",
    "AnchorFactory",
    "KycFlow",
    "SUPPORTED_PROVIDERS",
    "build_quote_customer_id",
    "get_capabilities",
    "looks_like_provider_customer_id",
]
