"""SEP-1: anchor discovery through ``stellar.toml``."""

import logging
import tomllib
from typing import Optional

from rampkit.sep.base import SepApiError, SepHttp

logger = logging.getLogger(__name__)

TOML_PATH = "/.well-known/stellar.toml"
MAX_TOML_BYTES = 100 * 1024

SEP_ENDPOINT_KEYS = {
    6: "TRANSFER_SERVER",
    10: "WEB_AUTH_ENDPOINT",
    12: "KYC_SERVER",
    24: "TRANSFER_SERVER_SEP0024",
    31: "DIRECT_PAYMENT_SERVER",
    38: "ANCHOR_QUOTE_SERVER",
}


class StellarToml:
    """Parsed ``stellar.toml`` with accessors for the SEP service endpoints."""

    def __init__(self, data: dict, domain: str = ""):
        self.data = data
        self.domain = domain

    def get(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return str(value).rstrip("/") if value else None

    @property
    def web_auth_endpoint(self) -> Optional[str]:
        return self.get("WEB_AUTH_ENDPOINT")

    @property
    def transfer_server(self) -> Optional[str]:
        return self.get("TRANSFER_SERVER")

    @property
    def kyc_server(self) -> Optional[str]:
        return self.get("KYC_SERVER")

    @property
    def transfer_server_sep24(self) -> Optional[str]:
        return self.get("TRANSFER_SERVER_SEP0024")

    @property
    def direct_payment_server(self) -> Optional[str]:
        return self.get("DIRECT_PAYMENT_SERVER")

    @property
    def quote_server(self) -> Optional[str]:
        return self.get("ANCHOR_QUOTE_SERVER")

    @property
    def signing_key(self) -> Optional[str]:
        return self.data.get("SIGNING_KEY") or None

    @property
    def network_passphrase(self) -> Optional[str]:
        return self.data.get("NETWORK_PASSPHRASE") or None

    @property
    def currencies(self) -> list[dict]:
        return list(self.data.get("CURRENCIES", []))

    def currency(self, code: str) -> Optional[dict]:
        for currency in self.currencies:
            if currency.get("code") == code:
                return currency
        return None

    def endpoint(self, sep: int) -> Optional[str]:
        key = SEP_ENDPOINT_KEYS.get(sep)
        return self.get(key) if key else None

    def supports_sep(self, sep: int) -> bool:
        return self.endpoint(sep) is not None

    def require_endpoint(self, sep: int) -> str:
        """Service endpoint for ``sep``.

        Raises:
            SepApiError: SEP_NOT_SUPPORTED if the anchor does not publish one
        """
        endpoint = self.endpoint(sep)
        if endpoint is None:
            raise SepApiError(
                f"Anchor does not support SEP-{sep}", 501, code="SEP_NOT_SUPPORTED"
            )
        return endpoint


def parse_stellar_toml(text: str, domain: str = "") -> StellarToml:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise SepApiError(
            f"Invalid stellar.toml for {domain or 'anchor'}: {e}", 502, code="INVALID_TOML"
        ) from e
    return StellarToml(data, domain)


async def fetch_stellar_toml(domain: str, http: SepHttp, allow_http: bool = False) -> StellarToml:
    """Fetch and parse ``https://{domain}/.well-known/stellar.toml``."""
    scheme = "http" if allow_http else "https"
    url = f"{scheme}://{domain}{TOML_PATH}"
    logger.info(f"[SEP-1] Resolving {url}")
    text = await http.get_text(url, "fetch stellar.toml", MAX_TOML_BYTES)
    return parse_stellar_toml(text, domain)
