"""Etherfuse anchor client.

MXN <-> CETES on Stellar over SPEI. KYC runs in an embedded onboarding
iframe. Off-ramp signing is deferred: the burn transaction is not part of
the order creation response and only shows up on later order lookups.

Docs: https://docs.etherfuse.com
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from rampkit.anchors.base import (
    DEFAULT_TIMEOUT,
    AnchorError,
    AnchorExtensions,
    HttpAnchorClient,
    ProgrammaticKycExtension,
    SandboxExtension,
)
from rampkit.anchors.models import (
    BankAccount,
    CreateCustomerInput,
    CreateOffRampInput,
    CreateOnRampInput,
    Customer,
    GetQuoteInput,
    KycStatus,
    OffRampTransaction,
    OnRampTransaction,
    PaymentInstructions,
    Quote,
    RegisteredFiatAccount,
    RegisterFiatAccountInput,
    SavedFiatAccount,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

ORDER_STATUS_MAP = {
    "created": TransactionStatus.PENDING,
    "funded": TransactionStatus.PROCESSING,
    "completed": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "refunded": TransactionStatus.REFUNDED,
    "canceled": TransactionStatus.CANCELLED,
}

KYC_STATUS_MAP = {
    "not_started": KycStatus.NOT_STARTED,
    "proposed": KycStatus.PENDING,
    "approved": KycStatus.APPROVED,
    "rejected": KycStatus.REJECTED,
}

# 409 body when a public key is already onboarded: "... see org: <uuid>"
_EXISTING_ORG_RE = re.compile(r"see org:\s*([0-9a-f-]+)", re.IGNORECASE)


@dataclass
class EtherfuseConfig:
    api_key: str
    base_url: str = "https://api.sand.etherfuse.com"
    blockchain: str = "stellar"
    timeout: float = DEFAULT_TIMEOUT


class EtherfuseSandbox(SandboxExtension):
    def __init__(self, client: "EtherfuseClient"):
        self._client = client

    async def simulate_fiat_received(self, order_id: str) -> int:
        return await self._client.simulate_fiat_received(order_id)


class EtherfuseProgrammaticKyc(ProgrammaticKycExtension):
    def __init__(self, client: "EtherfuseClient"):
        self._client = client

    async def submit_kyc_identity(self, customer_id: str, public_key: str, identity: dict) -> Any:
        return await self._client.submit_kyc_identity(customer_id, public_key, identity)

    async def submit_kyc_documents(
        self, customer_id: str, public_key: str, documents: list[dict]
    ) -> Any:
        return await self._client.submit_kyc_documents(customer_id, public_key, documents)

    async def accept_agreements(
        self, customer_id: str, public_key: str, bank_account_id: Optional[str] = None
    ) -> Any:
        presigned_url = await self._client.get_kyc_url(customer_id, public_key, bank_account_id)
        return await self._client.accept_agreements(presigned_url)


class EtherfuseClient(HttpAnchorClient):
    """Client for the Etherfuse ramp API."""

    log_prefix = "Etherfuse"

    def __init__(self, config: EtherfuseConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config.base_url, http_client=http_client, timeout=config.timeout)
        self.config = config
        self.blockchain = config.blockchain
        self._extensions = AnchorExtensions(
            programmatic_kyc=EtherfuseProgrammaticKyc(self),
            sandbox=EtherfuseSandbox(self),
        )

    @property
    def name(self) -> str:
        return "etherfuse"

    @property
    def extensions(self) -> AnchorExtensions:
        return self._extensions

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.config.api_key}

    # ======================
    # Mapping helpers
    # ======================

    @staticmethod
    def _map_order_status(status: str) -> TransactionStatus:
        return ORDER_STATUS_MAP.get(status, TransactionStatus.PENDING)

    @staticmethod
    def _map_kyc_status(status: str) -> KycStatus:
        return KYC_STATUS_MAP.get(status, KycStatus.NOT_STARTED)

    def _map_onramp(self, data: dict) -> OnRampTransaction:
        clabe = data.get("depositClabe")
        return OnRampTransaction(
            id=data["orderId"],
            customer_id=data.get("customerId", ""),
            status=self._map_order_status(data.get("status", "")),
            from_amount=data.get("amountInFiat") or "",
            to_amount=data.get("amountInTokens") or "",
            fee_bps=data.get("feeBps"),
            fee_amount=data.get("feeAmountInFiat"),
            payment_instructions=PaymentInstructions(
                clabe=clabe,
                reference=data.get("depositReference") or data["orderId"],
                amount=data.get("amountInFiat") or "",
            )
            if clabe
            else None,
            stellar_tx_hash=data.get("confirmedTxSignature"),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    def _map_offramp(self, data: dict) -> OffRampTransaction:
        # burnTransaction stays absent until the anchor has prepared it
        return OffRampTransaction(
            id=data["orderId"],
            customer_id=data.get("customerId", ""),
            status=self._map_order_status(data.get("status", "")),
            from_amount=data.get("amountInTokens") or "",
            to_amount=data.get("amountInFiat") or "",
            fee_bps=data.get("feeBps"),
            fee_amount=data.get("feeAmountInFiat"),
            memo=data.get("memo"),
            bank_account=BankAccount(id=data.get("bankAccountId") or ""),
            stellar_tx_hash=data.get("confirmedTxSignature"),
            signable_transaction=data.get("burnTransaction") or None,
            status_page=data.get("statusPage"),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    async def _resolve_asset_pair(
        self, from_currency: str, to_currency: str, wallet: str
    ) -> tuple[str, str]:
        """Resolve symbols to ``CODE:ISSUER`` identifiers via ``/ramp/assets``."""
        if ":" in from_currency and ":" in to_currency:
            return from_currency, to_currency

        response = await self.get_assets(self.blockchain, "mxn", wallet)
        identifiers = {
            asset["symbol"]: asset["identifier"] for asset in response.get("assets", [])
        }
        return (
            identifiers.get(from_currency, from_currency),
            identifiers.get(to_currency, to_currency),
        )

    async def _default_bank_account_id(self, customer_id: str) -> Optional[str]:
        accounts = await self.get_fiat_accounts(customer_id)
        return accounts[0].id if accounts else None

    # ======================
    # Anchor interface
    # ======================

    async def create_customer(self, input: CreateCustomerInput) -> Customer:
        """Register a customer through the onboarding URL endpoint.

        The customer and bank account ids are partner-side UUIDs. If the public
        key is already onboarded (409), the existing customer is recovered
        from the error message.
        """
        if not input.public_key:
            raise AnchorError(
                "public_key is required to create an Etherfuse customer",
                "MISSING_PUBLIC_KEY",
                400,
            )

        customer_id = str(uuid.uuid4())
        bank_account_id = str(uuid.uuid4())

        try:
            await self._request(
                "POST",
                "/ramp/onboarding-url",
                json_body={
                    "customerId": customer_id,
                    "bankAccountId": bank_account_id,
                    "email": input.email,
                    "publicKey": input.public_key,
                    "blockchain": self.blockchain,
                },
            )
        except AnchorError as e:
            match = _EXISTING_ORG_RE.search(e.message) if e.status_code == 409 else None
            if not match:
                raise
            existing_id = match.group(1)
            logger.info(f"Public key already registered, using existing customer {existing_id}")
            return Customer(
                id=existing_id,
                email=input.email,
                bank_account_id=await self._recover_bank_account(existing_id),
            )

        return Customer(id=customer_id, email=input.email, bank_account_id=bank_account_id)

    async def _recover_bank_account(self, customer_id: str) -> Optional[str]:
        try:
            return await self._default_bank_account_id(customer_id)
        except AnchorError as e:
            logger.warning(f"Could not fetch bank accounts for recovered customer: {e}")
            return None

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        data = await self._request_or_none("GET", f"/ramp/customer/{customer_id}")
        if data is None:
            return None
        # KYC status needs the public key and comes from get_kyc_status
        return Customer(
            id=data["customerId"],
            email=data.get("email", ""),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    async def get_quote(self, input: GetQuoteInput) -> Quote:
        if input.to_amount is not None:
            # /ramp/quote only prices a source amount
            raise AnchorError(
                "Etherfuse quotes require a source amount", "UNSUPPORTED_AMOUNT_SIDE", 400
            )

        source, target = await self._resolve_asset_pair(
            input.from_currency, input.to_currency, input.stellar_address or ""
        )
        # A resolved CODE:ISSUER source asset means crypto -> fiat
        ramp_type = "offramp" if ":" in source else "onramp"

        data = await self._request(
            "POST",
            "/ramp/quote",
            json_body={
                "quoteId": str(uuid.uuid4()),
                "customerId": input.customer_id or "",
                "blockchain": self.blockchain,
                "quoteAssets": {
                    "type": ramp_type,
                    "sourceAsset": source,
                    "targetAsset": target,
                },
                "sourceAmount": input.from_amount,
            },
        )

        assets = data.get("quoteAssets", {})
        return Quote(
            id=data["quoteId"],
            from_currency=assets.get("sourceAsset", source),
            to_currency=assets.get("targetAsset", target),
            from_amount=data["sourceAmount"],
            to_amount=data.get("destinationAmountAfterFee") or data["destinationAmount"],
            exchange_rate=data["exchangeRate"],
            fee=data.get("feeAmount") or "0",
            expires_at=data["expiresAt"],
            created_at=data.get("createdAt", ""),
        )

    async def _create_order(
        self, bank_account_id: Optional[str], public_key: str, quote_id: str, memo: Optional[str]
    ) -> dict:
        body: dict[str, Any] = {
            "orderId": str(uuid.uuid4()),
            "bankAccountId": bank_account_id,
            "publicKey": public_key,
            "quoteId": quote_id,
        }
        if memo:
            body["memo"] = memo
        return await self._request("POST", "/ramp/order", json_body=body)

    async def create_onramp(self, input: CreateOnRampInput) -> OnRampTransaction:
        """Create an MXN -> CETES order with SPEI payment instructions."""
        bank_account_id = input.bank_account_id
        if not bank_account_id and input.customer_id:
            bank_account_id = await self._default_bank_account_id(input.customer_id)

        data = await self._create_order(
            bank_account_id, input.stellar_address, input.quote_id, input.memo
        )
        onramp = data["onramp"]

        return OnRampTransaction(
            id=onramp["orderId"],
            customer_id=input.customer_id,
            quote_id=input.quote_id,
            status=TransactionStatus.PENDING,
            from_amount=input.amount,
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            stellar_address=input.stellar_address,
            payment_instructions=PaymentInstructions(
                clabe=onramp["depositClabe"],
                reference=onramp.get("depositReference") or onramp["orderId"],
                amount=onramp.get("depositAmount") or input.amount,
                currency=input.from_currency,
            ),
        )

    async def get_onramp_transaction(self, transaction_id: str) -> Optional[OnRampTransaction]:
        data = await self._request_or_none("GET", f"/ramp/order/{transaction_id}")
        return self._map_onramp(data) if data is not None else None

    async def register_fiat_account(
        self, input: RegisterFiatAccountInput
    ) -> RegisteredFiatAccount:
        data = await self._request(
            "POST",
            "/ramp/bank-account",
            json_body={
                "bankAccountId": str(uuid.uuid4()),
                "customerId": input.customer_id,
                "bankName": input.bank_account.bank_name,
                "clabe": input.bank_account.clabe,
                "beneficiary": input.bank_account.beneficiary,
            },
        )
        return RegisteredFiatAccount(
            id=data["bankAccountId"],
            customer_id=data.get("customerId", input.customer_id),
            type="SPEI",
            status=data.get("status", ""),
            created_at=data.get("createdAt", ""),
        )

    async def get_fiat_accounts(self, customer_id: str) -> list[SavedFiatAccount]:
        data = await self._request_or_none(
            "POST", f"/ramp/customer/{customer_id}/bank-accounts", json_body={}
        )
        if not data:
            return []
        return [
            SavedFiatAccount(
                id=item["bankAccountId"],
                type="SPEI",
                account_number=item.get("abbrClabe", ""),
                created_at=item.get("createdAt", ""),
            )
            for item in data.get("items", [])
        ]

    async def create_offramp(self, input: CreateOffRampInput) -> OffRampTransaction:
        """Create a CETES -> MXN order.

        The burn transaction is never in this response, so
        ``signable_transaction`` is always ``None`` here. Poll
        :meth:`get_offramp_transaction` until it appears.
        """
        bank_account_id = input.fiat_account_id or None
        if not bank_account_id and input.customer_id:
            bank_account_id = await self._default_bank_account_id(input.customer_id)

        data = await self._create_order(
            bank_account_id, input.stellar_address, input.quote_id, input.memo
        )
        offramp = data["offramp"]
        info = input.bank_account_info

        return OffRampTransaction(
            id=offramp["orderId"],
            customer_id=input.customer_id,
            quote_id=input.quote_id,
            status=TransactionStatus.PENDING,
            from_amount=input.amount,
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            stellar_address=input.stellar_address,
            memo=input.memo,
            bank_account=BankAccount(
                id=bank_account_id or "",
                bank_name=info.bank_name if info else "",
                clabe=info.clabe if info else "",
                beneficiary=info.beneficiary if info else "",
            ),
            signable_transaction=None,
        )

    async def get_offramp_transaction(self, transaction_id: str) -> Optional[OffRampTransaction]:
        data = await self._request_or_none("GET", f"/ramp/order/{transaction_id}")
        return self._map_offramp(data) if data is not None else None

    async def get_kyc_url(
        self,
        customer_id: str,
        public_key: Optional[str] = None,
        bank_account_id: Optional[str] = None,
    ) -> str:
        """Fresh presigned onboarding URL for the KYC iframe."""
        if not public_key:
            raise AnchorError("public_key is required for KYC onboarding", "MISSING_PUBLIC_KEY", 400)

        data = await self._request(
            "POST",
            "/ramp/onboarding-url",
            json_body={
                "customerId": customer_id,
                "bankAccountId": bank_account_id or str(uuid.uuid4()),
                "publicKey": public_key,
                "blockchain": self.blockchain,
            },
        )
        return data["presigned_url"]

    async def get_kyc_status(self, customer_id: str, public_key: Optional[str] = None) -> KycStatus:
        if not public_key:
            raise AnchorError("public_key is required for KYC status checks", "MISSING_PUBLIC_KEY", 400)

        data = await self._request("GET", f"/ramp/customer/{customer_id}/kyc/{public_key}")
        return self._map_kyc_status(data.get("status", ""))

    # ======================
    # Etherfuse-specific
    # ======================

    async def get_assets(
        self,
        blockchain: Optional[str] = None,
        currency: Optional[str] = None,
        wallet: Optional[str] = None,
    ) -> dict:
        """List rampable assets."""
        params = {
            key: value
            for key, value in (("blockchain", blockchain), ("currency", currency), ("wallet", wallet))
            if value
        }
        return await self._request("GET", "/ramp/assets", params=params or None)

    async def submit_kyc_identity(self, customer_id: str, public_key: str, identity: dict) -> Any:
        return await self._request(
            "POST", f"/ramp/customer/{customer_id}/kyc/{public_key}/identity", json_body=identity
        )

    async def submit_kyc_documents(
        self, customer_id: str, public_key: str, documents: list[dict]
    ) -> Any:
        return await self._request(
            "POST",
            f"/ramp/customer/{customer_id}/kyc/{public_key}/documents",
            json_body={"documents": documents},
        )

    async def accept_agreements(self, presigned_url: str) -> Any:
        """Accept all legal agreements through a presigned onboarding URL."""
        try:
            return await self._request("POST", "", json_body={"acceptAll": True}, url=presigned_url)
        except AnchorError as e:
            raise AnchorError(e.message, "AGREEMENT_ERROR", e.status_code) from e

    async def simulate_fiat_received(self, order_id: str) -> int:
        """Simulate the SPEI deposit for an order. Sandbox only.

        Returns the raw HTTP status (200, 400 or 404).
        """
        url = f"{self.base_url}/ramp/order/fiat_received"
        logger.info(f"[Etherfuse] Simulating fiat received for order {order_id}")
        response = await self._send(
            "POST",
            url,
            headers={"Content-Type": "application/json", **self._headers()},
            json={"orderId": order_id},
        )
        return response.status_code
