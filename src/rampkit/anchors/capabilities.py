"""Anchor capability model.

Each provider declares which optional behaviours apply to it. Flow code
consults these flags and never branches on provider identity.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

COMPOSITE_ID_DELIMITER = ":"


class KycFlow(str, Enum):
    """How KYC is presented to the user."""

    FORM = "form"          # Inline data + document form
    IFRAME = "iframe"      # Embedded onboarding URL
    REDIRECT = "redirect"  # External redirect with Terms of Service


@dataclass(frozen=True)
class AnchorCapabilities:
    """Static per-provider behaviour flags.

    Absent flags mean "capability not present".

    Off-ramp settlement is selected by three flags:
    - ``requires_anchor_payout_submission``: the anchor settles the payout
      itself after a submission call, no user-side ledger signing.
    - ``requires_offramp_signing``: the anchor prepares a transaction envelope
      the user signs; with ``deferred_offramp_signing`` the envelope only
      appears by polling the transaction.
    - none of the above: the user builds and signs a direct payment to the
      deposit address returned by the anchor.
    """

    kyc_flow: Optional[KycFlow] = None
    supports_email_lookup: bool = False
    kyc_url: bool = False
    requires_tos: bool = False
    requires_offramp_signing: bool = False
    deferred_offramp_signing: bool = False
    requires_bank_before_quote: bool = False
    requires_blockchain_wallet_registration: bool = False
    requires_anchor_payout_submission: bool = False
    composite_quote_customer_id: bool = False
    sandbox: bool = False
    display_name: str = ""


ANCHOR_CAPABILITIES: dict[str, AnchorCapabilities] = {
    "etherfuse": AnchorCapabilities(
        kyc_flow=KycFlow.IFRAME,
        kyc_url=True,
        requires_offramp_signing=True,
        deferred_offramp_signing=True,
        sandbox=True,
        display_name="Etherfuse",
    ),
    "alfredpay": AnchorCapabilities(
        kyc_flow=KycFlow.FORM,
        supports_email_lookup=True,
        kyc_url=True,
        sandbox=True,
        display_name="Alfred Pay",
    ),
    "blindpay": AnchorCapabilities(
        kyc_flow=KycFlow.REDIRECT,
        kyc_url=True,
        requires_tos=True,
        requires_bank_before_quote=True,
        requires_blockchain_wallet_registration=True,
        requires_anchor_payout_submission=True,
        composite_quote_customer_id=True,
        sandbox=True,
        display_name="BlindPay",
    ),
}

_DEFAULT_CAPABILITIES = AnchorCapabilities()


def get_capabilities(provider_id: str) -> AnchorCapabilities:
    """Get capabilities for a provider; unknown providers have none."""
    capabilities = ANCHOR_CAPABILITIES.get(provider_id.lower())
    if capabilities is None:
        logger.debug(f"No capabilities registered for '{provider_id}', using defaults")
        return _DEFAULT_CAPABILITIES
    return capabilities


def build_quote_customer_id(
    customer_id: str,
    resource_id: Optional[str],
    capabilities: Optional[AnchorCapabilities],
) -> str:
    """Build the customer id sent with a quote request.

    Providers with ``composite_quote_customer_id`` expect
    ``"customerId:resourceId"`` where the resource is the registered wallet
    (on-ramp) or bank account (off-ramp). Everyone else gets the plain id.
    """
    if capabilities is not None and capabilities.composite_quote_customer_id and resource_id:
        return f"{customer_id}{COMPOSITE_ID_DELIMITER}{resource_id}"
    return customer_id


def parse_composite_customer_id(value: Optional[str]) -> tuple[str, Optional[str]]:
    """Split ``"customerId:resourceId"`` into its parts."""
    if not value:
        return "", None
    customer_id, sep, resource_id = value.partition(COMPOSITE_ID_DELIMITER)
    return customer_id, (resource_id or None) if sep else None


# Identity formats of ids minted by the providers themselves
_CUSTOMER_ID_FORMATS: dict[str, re.Pattern] = {
    "blindpay": re.compile(r"^re_[A-Za-z0-9]+$"),
}


def looks_like_provider_customer_id(provider_id: str, customer_id: str) -> bool:
    """Check a customer id against the provider's identity format.

    BlindPay's ``create_customer`` returns a locally synthesized placeholder
    that downstream receiver endpoints reject. Callers check this before
    using an id for follow-on calls. Providers without a known format pass.
    """
    pattern = _CUSTOMER_ID_FORMATS.get(provider_id.lower())
    if pattern is None:
        return bool(customer_id)
    return bool(pattern.match(customer_id))


# ======================
# Anchor profiles
# ======================


@dataclass(frozen=True)
class RegionCapability:
    """What an anchor offers in one region."""

    on_ramp: bool
    off_ramp: bool
    payment_rails: tuple[str, ...]
    tokens: tuple[str, ...]
    kyc_required: bool = True
    min_amount: Optional[str] = None
    max_amount: Optional[str] = None


@dataclass(frozen=True)
class AnchorProfile:
    """Descriptive metadata for an anchor provider."""

    id: str
    name: str
    description: str
    capabilities: AnchorCapabilities
    links: dict[str, str] = field(default_factory=dict)
    regions: dict[str, RegionCapability] = field(default_factory=dict)

    def supports(self, region: str, token: str) -> bool:
        region_caps = self.regions.get(region)
        return region_caps is not None and token.upper() in region_caps.tokens


ANCHOR_PROFILES: dict[str, AnchorProfile] = {
    "etherfuse": AnchorProfile(
        id="etherfuse",
        name="Etherfuse",
        description="Bridges traditional finance and DeFi with tokenized bonds.",
        capabilities=ANCHOR_CAPABILITIES["etherfuse"],
        links={
            "website": "https://www.etherfuse.com",
            "documentation": "https://docs.etherfuse.com",
        },
        regions={
            "mexico": RegionCapability(
                on_ramp=True, off_ramp=True, payment_rails=("spei",), tokens=("CETES",)
            ),
        },
    ),
    "alfredpay": AnchorProfile(
        id="alfredpay",
        name="Alfred Pay",
        description="Fiat on/off ramp services across Latin America.",
        capabilities=ANCHOR_CAPABILITIES["alfredpay"],
        links={
            "website": "https://alfredpay.io",
            "documentation": "https://alfredpay.readme.io",
        },
        regions={
            "mexico": RegionCapability(
                on_ramp=True, off_ramp=True, payment_rails=("spei",), tokens=("USDC",)
            ),
        },
    ),
    "blindpay": AnchorProfile(
        id="blindpay",
        name="BlindPay",
        description="Global payment infrastructure for fiat and stablecoin transfers.",
        capabilities=ANCHOR_CAPABILITIES["blindpay"],
        links={
            "website": "https://blindpay.com",
            "documentation": "https://docs.blindpay.com",
        },
        regions={
            "mexico": RegionCapability(
                on_ramp=True, off_ramp=True, payment_rails=("spei",), tokens=("USDB",)
            ),
        },
    ),
}


def get_profile(provider_id: str) -> Optional[AnchorProfile]:
    return ANCHOR_PROFILES.get(provider_id.lower())


def list_profiles() -> list[AnchorProfile]:
    return list(ANCHOR_PROFILES.values())
