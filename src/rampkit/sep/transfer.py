"""SEP-6: programmatic deposit and withdrawal.

:class:`TransferServerClient` also carries the ``/info`` and transaction
endpoints that SEP-24 shares with SEP-6.
"""

import logging
from typing import Any, Callable, Optional

from rampkit.sep.base import SepApiError, SepHttp, poll_transaction
from rampkit.sep.models import DepositInstructions, SepTransaction, WithdrawInstructions

logger = logging.getLogger(__name__)


class TransferServerClient:
    sep = 6

    def __init__(self, server: str, http: SepHttp):
        self.server = server.rstrip("/")
        self.http = http

    async def get_info(self, token: Optional[str] = None) -> dict:
        return await self.http.request(
            "GET", f"{self.server}/info", f"get SEP-{self.sep} info", token=token
        )

    async def get_transaction(
        self,
        token: str,
        id: Optional[str] = None,
        stellar_transaction_id: Optional[str] = None,
        external_transaction_id: Optional[str] = None,
    ) -> SepTransaction:
        if not (id or stellar_transaction_id or external_transaction_id):
            raise SepApiError("A transaction id is required", 400, code="MISSING_TRANSACTION_ID")
        data = await self.http.request(
            "GET",
            f"{self.server}/transaction",
            "get transaction",
            token=token,
            params={
                "id": id,
                "stellar_transaction_id": stellar_transaction_id,
                "external_transaction_id": external_transaction_id,
            },
        )
        return SepTransaction.model_validate(data["transaction"])

    async def get_transactions(
        self,
        token: str,
        asset_code: str,
        limit: Optional[int] = None,
        kind: Optional[str] = None,
        paging_id: Optional[str] = None,
        no_older_than: Optional[str] = None,
    ) -> list[SepTransaction]:
        data = await self.http.request(
            "GET",
            f"{self.server}/transactions",
            "get transactions",
            token=token,
            params={
                "asset_code": asset_code,
                "limit": limit,
                "kind": kind,
                "paging_id": paging_id,
                "no_older_than": no_older_than,
            },
        )
        return [SepTransaction.model_validate(item) for item in data.get("transactions", [])]

    async def poll_transaction(
        self,
        token: str,
        transaction_id: str,
        interval: float = 5.0,
        timeout: float = 600.0,
        on_status_change: Optional[Callable[[SepTransaction], None]] = None,
    ) -> SepTransaction:
        """Poll until completed, refunded or failed."""
        return await poll_transaction(
            lambda: self.get_transaction(token, id=transaction_id),
            lambda transaction: transaction.is_terminal,
            interval=interval,
            timeout=timeout,
            on_status_change=on_status_change,
        )


class Sep6Client(TransferServerClient):
    sep = 6

    async def deposit(
        self, token: str, asset_code: str, account: str, **params: Any
    ) -> DepositInstructions:
        """Request deposit instructions.

        Extra keyword arguments are passed through as query parameters
        (``amount``, ``memo``, ``type``, ``customer_id``...).
        """
        data = await self.http.request(
            "GET",
            f"{self.server}/deposit",
            "start deposit",
            token=token,
            params={"asset_code": asset_code, "account": account, **params},
        )
        logger.info(f"[SEP-6] Deposit {asset_code} started: {data.get('id')}")
        return DepositInstructions.model_validate(data)

    async def withdraw(
        self, token: str, asset_code: str, type: str, **params: Any
    ) -> WithdrawInstructions:
        data = await self.http.request(
            "GET",
            f"{self.server}/withdraw",
            "start withdrawal",
            token=token,
            params={"asset_code": asset_code, "type": type, **params},
        )
        logger.info(f"[SEP-6] Withdrawal {asset_code} started: {data.get('id')}")
        return WithdrawInstructions.model_validate(data)
