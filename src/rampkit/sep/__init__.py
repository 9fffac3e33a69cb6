"""Stellar SEP clients (SEP-1, 6, 10, 12, 24, 31, 38)."""

from rampkit.sep.auth import (
    Sep10Client,
    Sep10Config,
    decode_token,
    is_token_expired,
    validate_challenge,
)
from rampkit.sep.base import SepApiError, SepHttp
from rampkit.sep.client import SepAnchorClient
from rampkit.sep.interactive import Sep24Client
from rampkit.sep.kyc import Sep12Client, to_kyc_status
from rampkit.sep.payments import Sep31Client
from rampkit.sep.quotes import Sep38Client, fiat_asset_id, parse_asset_id, stellar_asset_id
from rampkit.sep.status import SepStatus, to_transaction_status
from rampkit.sep.stellar_toml import StellarToml, fetch_stellar_toml, parse_stellar_toml
from rampkit.sep.transfer import Sep6Client

__all__ = [
    "Sep10Client",
    "Sep10Config",
    "Sep12Client",
    "Sep24Client",
    "Sep31Client",
    "Sep38Client",
    "Sep6Client",
    "SepAnchorClient",
    "SepApiError",
    "SepHttp",
    "SepStatus",
    "StellarToml",
    "decode_token",
    "fetch_stellar_toml",
    "fiat_asset_id",
    "is_token_expired",
    "parse_asset_id",
    "parse_stellar_toml",
    "stellar_asset_id",
    "to_kyc_status",
    "to_transaction_status",
    "validate_challenge",
]
