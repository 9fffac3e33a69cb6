"""SEP-38: anchor RFQ (indicative prices and firm quotes).

Assets are named ``stellar:CODE:ISSUER``, ``stellar:native`` or
``iso4217:CODE``.
"""

import logging
from typing import NamedTuple, Optional

from rampkit.sep.base import SepApiError, SepHttp
from rampkit.sep.models import FirmQuote, Price

logger = logging.getLogger(__name__)

NATIVE_ASSET = "stellar:native"


class AssetId(NamedTuple):
    scheme: str
    code: str
    issuer: Optional[str] = None

    @property
    def is_fiat(self) -> bool:
        return self.scheme == "iso4217"


def stellar_asset_id(code: str, issuer: Optional[str] = None) -> str:
    if code in ("XLM", "native"):
        return NATIVE_ASSET
    if not issuer:
        raise ValueError(f"Issuer required for non-native asset {code}")
    return f"stellar:{code}:{issuer}"


def fiat_asset_id(code: str) -> str:
    return f"iso4217:{code}"


def parse_asset_id(asset_id: str) -> AssetId:
    scheme, _, rest = asset_id.partition(":")
    if scheme == "stellar":
        if rest == "native":
            return AssetId("stellar", "XLM")
        code, _, issuer = rest.partition(":")
        return AssetId("stellar", code, issuer or None)
    if scheme == "iso4217":
        return AssetId("iso4217", rest)
    raise ValueError(f"Unknown asset scheme: {scheme}")


def _one_amount(sell_amount: Optional[str], buy_amount: Optional[str]) -> None:
    if (sell_amount is None) == (buy_amount is None):
        raise SepApiError(
            "Exactly one of sell_amount or buy_amount is required", 400, code="INVALID_AMOUNT"
        )


class Sep38Client:
    def __init__(self, quote_server: str, http: SepHttp):
        self.server = quote_server.rstrip("/")
        self.http = http

    async def get_info(self, token: Optional[str] = None) -> list[dict]:
        data = await self.http.request("GET", f"{self.server}/info", "get SEP-38 info", token=token)
        return data.get("assets", [])

    async def get_prices(
        self,
        sell_asset: Optional[str] = None,
        buy_asset: Optional[str] = None,
        sell_amount: Optional[str] = None,
        buy_amount: Optional[str] = None,
        token: Optional[str] = None,
        **params: str,
    ) -> dict:
        """Indicative prices against every asset tradeable with the given one."""
        return await self.http.request(
            "GET",
            f"{self.server}/prices",
            "get prices",
            token=token,
            params={
                "sell_asset": sell_asset,
                "buy_asset": buy_asset,
                "sell_amount": sell_amount,
                "buy_amount": buy_amount,
                **params,
            },
        )

    async def get_price(
        self,
        sell_asset: str,
        buy_asset: str,
        context: str,
        sell_amount: Optional[str] = None,
        buy_amount: Optional[str] = None,
        token: Optional[str] = None,
        **params: str,
    ) -> Price:
        _one_amount(sell_amount, buy_amount)
        data = await self.http.request(
            "GET",
            f"{self.server}/price",
            "get price",
            token=token,
            params={
                "sell_asset": sell_asset,
                "buy_asset": buy_asset,
                "context": context,
                "sell_amount": sell_amount,
                "buy_amount": buy_amount,
                **params,
            },
        )
        return Price.model_validate(data)

    async def post_quote(
        self,
        token: str,
        sell_asset: str,
        buy_asset: str,
        context: str,
        sell_amount: Optional[str] = None,
        buy_amount: Optional[str] = None,
        expire_after: Optional[str] = None,
        **params: str,
    ) -> FirmQuote:
        """Request a firm quote. Requires SEP-10 authentication."""
        _one_amount(sell_amount, buy_amount)
        body = {
            "sell_asset": sell_asset,
            "buy_asset": buy_asset,
            "context": context,
            "sell_amount": sell_amount,
            "buy_amount": buy_amount,
            "expire_after": expire_after,
            **params,
        }
        data = await self.http.request(
            "POST",
            f"{self.server}/quote",
            "create quote",
            token=token,
            json_body={key: value for key, value in body.items() if value is not None},
        )
        quote = FirmQuote.model_validate(data)
        logger.info(f"[SEP-38] Quote {quote.id} expires {quote.expires_at}")
        return quote

    async def get_quote(self, token: str, quote_id: str) -> FirmQuote:
        data = await self.http.request(
            "GET", f"{self.server}/quote/{quote_id}", "get quote", token=token
        )
        return FirmQuote.model_validate(data)
