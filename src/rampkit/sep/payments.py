"""SEP-31: cross-border payments (sending anchor side)."""

import logging
from typing import Callable, Optional

from rampkit.sep.base import SepHttp, poll_transaction
from rampkit.sep.models import PaymentCreated, PaymentTransaction

logger = logging.getLogger(__name__)


class Sep31Client:
    def __init__(self, direct_payment_server: str, http: SepHttp):
        self.server = direct_payment_server.rstrip("/")
        self.http = http

    async def get_info(self, token: Optional[str] = None) -> dict:
        return await self.http.request(
            "GET", f"{self.server}/info", "get SEP-31 info", token=token
        )

    async def get_receive_assets(self, token: Optional[str] = None) -> dict[str, dict]:
        info = await self.get_info(token)
        return info.get("receive", {})

    async def post_transaction(
        self,
        token: str,
        amount: str,
        asset_code: str,
        sender_id: str,
        receiver_id: str,
        asset_issuer: Optional[str] = None,
        destination_asset: Optional[str] = None,
        quote_id: Optional[str] = None,
        fields: Optional[dict[str, str]] = None,
        lang: Optional[str] = None,
    ) -> PaymentCreated:
        """Create a payment. Send the Stellar payment to the returned account and memo."""
        body = {
            "amount": amount,
            "asset_code": asset_code,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "asset_issuer": asset_issuer,
            "destination_asset": destination_asset,
            "quote_id": quote_id,
            "fields": fields,
            "lang": lang,
        }
        data = await self.http.request(
            "POST",
            f"{self.server}/transactions",
            "create transaction",
            token=token,
            json_body={key: value for key, value in body.items() if value is not None},
        )
        created = PaymentCreated.model_validate(data)
        logger.info(f"[SEP-31] Created payment {created.id}")
        return created

    async def get_transaction(self, token: str, transaction_id: str) -> PaymentTransaction:
        data = await self.http.request(
            "GET",
            f"{self.server}/transactions/{transaction_id}",
            "get transaction",
            token=token,
        )
        return PaymentTransaction.model_validate(data["transaction"])

    async def patch_transaction(
        self, token: str, transaction_id: str, fields: dict[str, str]
    ) -> PaymentTransaction:
        """Supply the fields a ``pending_transaction_info_update`` asked for."""
        data = await self.http.request(
            "PATCH",
            f"{self.server}/transactions/{transaction_id}",
            "update transaction",
            token=token,
            json_body={"fields": fields},
        )
        return PaymentTransaction.model_validate(data["transaction"])

    async def put_transaction_callback(
        self, token: str, transaction_id: str, callback_url: str
    ) -> None:
        await self.http.request(
            "PUT",
            f"{self.server}/transactions/{transaction_id}/callback",
            "set callback",
            token=token,
            json_body={"url": callback_url},
        )

    async def poll_transaction(
        self,
        token: str,
        transaction_id: str,
        interval: float = 5.0,
        timeout: float = 600.0,
        on_status_change: Optional[Callable[[PaymentTransaction], None]] = None,
    ) -> PaymentTransaction:
        return await poll_transaction(
            lambda: self.get_transaction(token, transaction_id),
            lambda transaction: transaction.is_terminal,
            interval=interval,
            timeout=timeout,
            on_status_change=on_status_change,
        )
