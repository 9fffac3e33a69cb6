"""Client for a SEP-compliant anchor discovered through its home domain.

Defaults to the SDF test anchor. Endpoints come from the anchor's
``stellar.toml``; a SEP the anchor does not publish raises
SEP_NOT_SUPPORTED. Authenticated calls use the token from the last
:meth:`SepAnchorClient.authenticate`.
"""

import logging
from typing import Any, Optional

import httpx

from rampkit.anchors.base import DEFAULT_TIMEOUT
from rampkit.flow.signing import TransactionSigner
from rampkit.sep.auth import Sep10Client, Sep10Config, decode_token, is_token_expired
from rampkit.sep.base import SepApiError, SepHttp
from rampkit.sep.interactive import Sep24Client
from rampkit.sep.kyc import Sep12Client
from rampkit.sep.models import (
    DepositInstructions,
    FirmQuote,
    InteractiveResponse,
    KycCustomer,
    PaymentCreated,
    PaymentTransaction,
    Price,
    SepTransaction,
    TokenClaims,
    WithdrawInstructions,
)
from rampkit.sep.payments import Sep31Client
from rampkit.sep.quotes import Sep38Client
from rampkit.sep.stellar_toml import StellarToml, fetch_stellar_toml
from rampkit.sep.transfer import Sep6Client

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "testanchor.stellar.org"
TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"


class SepAnchorClient:
    def __init__(
        self,
        domain: str = DEFAULT_DOMAIN,
        network_passphrase: str = TESTNET_PASSPHRASE,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.domain = domain
        self.network_passphrase = network_passphrase
        self.http = SepHttp(http_client, timeout)
        self._toml: Optional[StellarToml] = None
        self._token: Optional[str] = None
        self._account: Optional[str] = None

    # ======================
    # Discovery (SEP-1)
    # ======================

    async def get_toml(self, refresh: bool = False) -> StellarToml:
        if self._toml is None or refresh:
            self._toml = await fetch_stellar_toml(self.domain, self.http)
        return self._toml

    async def supports_sep(self, sep: int) -> bool:
        return (await self.get_toml()).supports_sep(sep)

    async def _endpoint(self, sep: int) -> str:
        return (await self.get_toml()).require_endpoint(sep)

    async def sep6(self) -> Sep6Client:
        return Sep6Client(await self._endpoint(6), self.http)

    async def sep12(self) -> Sep12Client:
        return Sep12Client(await self._endpoint(12), self.http)

    async def sep24(self) -> Sep24Client:
        return Sep24Client(await self._endpoint(24), self.http)

    async def sep31(self) -> Sep31Client:
        return Sep31Client(await self._endpoint(31), self.http)

    async def sep38(self) -> Sep38Client:
        return Sep38Client(await self._endpoint(38), self.http)

    # ======================
    # Authentication (SEP-10)
    # ======================

    async def authenticate(
        self,
        account: str,
        signer: TransactionSigner,
        memo: Optional[str] = None,
        client_domain: Optional[str] = None,
    ) -> str:
        """Authenticate ``account`` and keep the token for later calls.

        The challenge is validated against the toml ``SIGNING_KEY`` when the
        anchor publishes one.
        """
        toml = await self.get_toml()
        auth = Sep10Client(
            Sep10Config(
                auth_endpoint=toml.require_endpoint(10),
                server_signing_key=toml.signing_key or "",
                network_passphrase=self.network_passphrase,
                home_domain=self.domain,
            ),
            self.http,
        )
        token = await auth.authenticate(
            account, signer, memo, client_domain, validate=bool(toml.signing_key)
        )
        self._token = token
        self._account = account
        return token

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def account(self) -> Optional[str]:
        return self._account

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and not is_token_expired(self._token)

    def token_claims(self) -> Optional[TokenClaims]:
        return decode_token(self._token) if self._token else None

    def logout(self) -> None:
        self._token = None
        self._account = None

    def require_auth(self) -> str:
        if not self.is_authenticated:
            raise SepApiError(
                "Not authenticated or token expired. Call authenticate() first.",
                401,
                code="NOT_AUTHENTICATED",
            )
        return self._token

    # ======================
    # KYC (SEP-12)
    # ======================

    async def get_customer(self, type: Optional[str] = None) -> KycCustomer:
        sep12 = await self.sep12()
        return await sep12.get_customer(self.require_auth(), type=type)

    async def put_customer(self, fields: dict[str, str | bytes]) -> str:
        sep12 = await self.sep12()
        return await sep12.put_customer(self.require_auth(), fields)

    async def delete_customer(self) -> None:
        sep12 = await self.sep12()
        await sep12.delete_customer(self.require_auth(), account=self._account)

    # ======================
    # Quotes (SEP-38)
    # ======================

    async def get_quote_info(self) -> list[dict]:
        sep38 = await self.sep38()
        return await sep38.get_info()

    async def get_price(self, sell_asset: str, buy_asset: str, context: str, **amounts: Any) -> Price:
        sep38 = await self.sep38()
        return await sep38.get_price(sell_asset, buy_asset, context, **amounts)

    async def create_quote(
        self, sell_asset: str, buy_asset: str, context: str, **params: Any
    ) -> FirmQuote:
        sep38 = await self.sep38()
        return await sep38.post_quote(self.require_auth(), sell_asset, buy_asset, context, **params)

    async def get_quote(self, quote_id: str) -> FirmQuote:
        sep38 = await self.sep38()
        return await sep38.get_quote(self.require_auth(), quote_id)

    # ======================
    # Transfers (SEP-6 / SEP-24)
    # ======================

    async def sep6_deposit(self, asset_code: str, **params: Any) -> DepositInstructions:
        sep6 = await self.sep6()
        account = params.pop("account", None) or self._account
        return await sep6.deposit(self.require_auth(), asset_code, account, **params)

    async def sep6_withdraw(self, asset_code: str, type: str, **params: Any) -> WithdrawInstructions:
        sep6 = await self.sep6()
        return await sep6.withdraw(self.require_auth(), asset_code, type, **params)

    async def sep24_deposit(self, asset_code: str, **params: Any) -> InteractiveResponse:
        sep24 = await self.sep24()
        return await sep24.deposit(self.require_auth(), asset_code, **params)

    async def sep24_withdraw(self, asset_code: str, **params: Any) -> InteractiveResponse:
        sep24 = await self.sep24()
        return await sep24.withdraw(self.require_auth(), asset_code, **params)

    async def get_transfer_transaction(self, sep: int, transaction_id: str) -> SepTransaction:
        transfer = await (self.sep24() if sep == 24 else self.sep6())
        return await transfer.get_transaction(self.require_auth(), id=transaction_id)

    # ======================
    # Payments (SEP-31)
    # ======================

    async def send_payment(
        self, amount: str, asset_code: str, sender_id: str, receiver_id: str, **params: Any
    ) -> PaymentCreated:
        sep31 = await self.sep31()
        return await sep31.post_transaction(
            self.require_auth(), amount, asset_code, sender_id, receiver_id, **params
        )

    async def get_payment(self, transaction_id: str) -> PaymentTransaction:
        sep31 = await self.sep31()
        return await sep31.get_transaction(self.require_auth(), transaction_id)
