"""BlindPay anchor client.

MXN <-> USDB on Stellar over SPEI. Onboarding is a Terms of Service redirect
followed by receiver creation with KYC data. Amounts on the wire are integer
cents. Quotes need a resource id (wallet or bank account) passed in a
composite ``receiverId:resourceId`` customer id.

Off-ramp is settled by the anchor: ``create_offramp`` authorizes the payout
and the payout submission extension hands the authorization back.

Docs: https://docs.blindpay.com
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from urllib.parse import quote as urlquote

import httpx

from rampkit.anchors.base import (
    DEFAULT_TIMEOUT,
    AnchorError,
    AnchorExtensions,
    HttpAnchorClient,
    PayoutSubmissionExtension,
    SandboxExtension,
    TermsOfServiceExtension,
    WalletRegistrationExtension,
)
from rampkit.anchors.capabilities import parse_composite_customer_id
from rampkit.anchors.models import (
    BankAccount,
    BlockchainWallet,
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
from rampkit.utils.currency import from_cents, to_cents
from rampkit.utils.time import from_epoch_millis, utcnow_iso

logger = logging.getLogger(__name__)

FIAT_CURRENCIES = ("MXN", "USD", "BRL", "ARS", "COP")
DEFAULT_WALLET_NAME = "Stellar Wallet"

RECEIVER_STATUS_MAP = {
    "verifying": KycStatus.PENDING,
    "approved": KycStatus.APPROVED,
    "rejected": KycStatus.REJECTED,
}

TRANSACTION_STATUS_MAP = {
    "pending": TransactionStatus.PENDING,
    "waiting_for_payment": TransactionStatus.PENDING,
    "processing": TransactionStatus.PROCESSING,
    "completed": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "refunded": TransactionStatus.REFUNDED,
}


@dataclass
class BlindPayConfig:
    api_key: str
    instance_id: str
    base_url: str = "https://api.blindpay.com"
    network: str = "stellar_testnet"
    timeout: float = DEFAULT_TIMEOUT


def _map_receiver_status(status: Optional[str]) -> KycStatus:
    return RECEIVER_STATUS_MAP.get(status or "", KycStatus.PENDING)


def _map_status(status: Optional[str]) -> TransactionStatus:
    return TRANSACTION_STATUS_MAP.get(status or "", TransactionStatus.PENDING)


def _token_for(currency: str) -> str:
    return "USDC" if currency.upper() == "USDC" else "USDB"


def _total_fee_cents(data: dict) -> Decimal:
    return sum(
        (
            Decimal(str(data.get(key) or 0))
            for key in ("flat_fee", "partner_fee_amount", "billing_fee_amount")
        ),
        Decimal("0"),
    )


class BlindPayTermsOfService(TermsOfServiceExtension):
    def __init__(self, client: "BlindPayClient"):
        self._client = client

    async def generate_tos_url(self, redirect_url: Optional[str] = None) -> str:
        return await self._client.generate_tos_url(redirect_url)

    async def create_receiver(self, data: dict) -> Customer:
        return await self._client.create_receiver(data)


class BlindPayWallets(WalletRegistrationExtension):
    def __init__(self, client: "BlindPayClient"):
        self._client = client

    async def register_blockchain_wallet(
        self, receiver_id: str, address: str, name: Optional[str] = None
    ) -> BlockchainWallet:
        return await self._client.register_blockchain_wallet(receiver_id, address, name)

    async def get_blockchain_wallets(self, receiver_id: str) -> list[BlockchainWallet]:
        return await self._client.get_blockchain_wallets(receiver_id)


class BlindPayPayouts(PayoutSubmissionExtension):
    def __init__(self, client: "BlindPayClient"):
        self._client = client

    async def submit_payout(self, transaction: OffRampTransaction) -> OffRampTransaction:
        return await self._client.submit_payout(transaction)


class BlindPayClient(HttpAnchorClient):
    """Client for the BlindPay API, scoped to one instance."""

    log_prefix = "BlindPay"

    def __init__(self, config: BlindPayConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config.base_url, http_client=http_client, timeout=config.timeout)
        self.config = config
        self.network = config.network
        self._extensions = AnchorExtensions(
            terms_of_service=BlindPayTermsOfService(self),
            wallet_registration=BlindPayWallets(self),
            payout_submission=BlindPayPayouts(self),
            # No sandbox simulation endpoints; every action is NOT_SUPPORTED
            sandbox=SandboxExtension(),
        )

    @property
    def name(self) -> str:
        return "blindpay"

    @property
    def extensions(self) -> AnchorExtensions:
        return self._extensions

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _instance_path(self, path: str) -> str:
        return f"/v1/instances/{self.config.instance_id}{path}"

    def _external_instance_path(self, path: str) -> str:
        return f"/v1/e/instances/{self.config.instance_id}{path}"

    # ======================
    # Mapping helpers
    # ======================

    @staticmethod
    def _map_payin(data: dict, receiver_id: str) -> OnRampTransaction:
        currency = data.get("currency") or "MXN"
        amount = from_cents(data.get("sender_amount"))
        instructions = None
        if data.get("clabe"):
            instructions = PaymentInstructions(
                clabe=data["clabe"],
                reference=data.get("memo_code") or "",
                amount=amount,
                currency=currency,
            )
        tracking = data.get("tracking_complete") or {}
        return OnRampTransaction(
            id=data["id"],
            customer_id=receiver_id or data.get("receiver_id") or "",
            quote_id=data.get("payin_quote_id", ""),
            status=_map_status(data.get("status")),
            from_amount=amount,
            from_currency=currency,
            to_amount=from_cents(data.get("receiver_amount")),
            to_currency=data.get("token") or "USDB",
            payment_instructions=instructions,
            stellar_tx_hash=tracking.get("transaction_hash") or None,
            created_at=data.get("created_at") or utcnow_iso(),
            updated_at=data.get("updated_at") or utcnow_iso(),
        )

    @staticmethod
    def _map_payout(data: dict, receiver_id: str = "") -> OffRampTransaction:
        return OffRampTransaction(
            id=data["id"],
            customer_id=receiver_id or data.get("receiver_id") or "",
            quote_id=data.get("quote_id", ""),
            status=_map_status(data.get("status")),
            from_amount=from_cents(data.get("sender_amount")),
            from_currency=data.get("sender_currency", ""),
            to_amount=from_cents(data.get("receiver_amount")),
            to_currency=data.get("receiver_currency", ""),
            stellar_address=data.get("sender_wallet_address", ""),
            stellar_tx_hash=data.get("blockchain_tx_hash") or None,
            created_at=data.get("created_at") or utcnow_iso(),
            updated_at=data.get("updated_at") or utcnow_iso(),
        )

    @staticmethod
    def _map_wallet(data: dict, receiver_id: str) -> BlockchainWallet:
        return BlockchainWallet(
            id=data["id"],
            receiver_id=data.get("receiver_id") or receiver_id,
            address=data.get("address", ""),
            network=data.get("network", ""),
            name=data.get("name", ""),
            created_at=data.get("created_at", ""),
        )

    # ======================
    # Anchor interface
    # ======================

    async def create_customer(self, input: CreateCustomerInput) -> Customer:
        """Return a local placeholder customer. No remote call is made.

        Receivers need an accepted ToS id and full KYC data, which do not fit
        ``CreateCustomerInput``. The placeholder id is not a receiver id and
        is rejected by every receiver endpoint; onboard through
        ``extensions.terms_of_service.create_receiver`` instead.
        """
        logger.warning(
            "[BlindPay] create_customer returns a local placeholder, "
            "use create_receiver for a real receiver id"
        )
        return Customer(id=str(uuid.uuid4()), email=input.email)

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        data = await self._request_or_none("GET", self._instance_path(f"/receivers/{customer_id}"))
        if data is None:
            return None
        return Customer(
            id=data["id"],
            email=data.get("email", ""),
            kyc_status=_map_receiver_status(data.get("kyc_status")),
            created_at=data.get("created_at") or utcnow_iso(),
            updated_at=data.get("updated_at") or utcnow_iso(),
        )

    async def get_quote(self, input: GetQuoteInput) -> Quote:
        """Get a payin (fiat source) or payout (asset source) quote.

        ``customer_id`` must be ``receiverId:resourceId``: the blockchain
        wallet id for payins, the bank account id for payouts.
        """
        _, resource_id = parse_composite_customer_id(input.customer_id)
        if not resource_id:
            raise AnchorError(
                "BlindPay quotes need a composite receiverId:resourceId customer id",
                "MISSING_RESOURCE_ID",
                400,
            )

        # "receiver" prices the amount the receiving side gets
        currency_type = "receiver" if input.to_amount is not None else "sender"
        request_amount = to_cents(input.amount)

        is_onramp = input.from_currency.upper() in FIAT_CURRENCIES
        if is_onramp:
            data = await self._request(
                "POST",
                self._instance_path("/payin-quotes"),
                json_body={
                    "blockchain_wallet_id": resource_id,
                    "currency_type": currency_type,
                    "cover_fees": False,
                    "request_amount": request_amount,
                    "payment_method": "spei",
                    "token": _token_for(input.to_currency),
                },
            )
        else:
            data = await self._request(
                "POST",
                self._instance_path("/quotes"),
                json_body={
                    "bank_account_id": resource_id,
                    "currency_type": currency_type,
                    "cover_fees": False,
                    "request_amount": request_amount,
                    "network": self.network,
                    "token": _token_for(input.from_currency),
                },
            )

        rate = data.get("blindpay_quotation")
        if rate is None:
            rate = data.get("commercial_quotation", 0)

        return Quote(
            id=data["id"],
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            from_amount=from_cents(data.get("sender_amount")),
            to_amount=from_cents(data.get("receiver_amount")),
            exchange_rate=str(rate),
            fee=from_cents(_total_fee_cents(data)),
            expires_at=from_epoch_millis(data["expires_at"]),
            created_at=utcnow_iso(),
        )

    async def create_onramp(self, input: CreateOnRampInput) -> OnRampTransaction:
        """Create a payin. The response carries the CLABE and memo code to pay."""
        data = await self._request(
            "POST",
            self._instance_path("/payins/evm"),
            json_body={"payin_quote_id": input.quote_id},
        )
        transaction = self._map_payin(data, input.customer_id)
        transaction.stellar_address = input.stellar_address
        return transaction

    async def get_onramp_transaction(self, transaction_id: str) -> Optional[OnRampTransaction]:
        data = await self._request_or_none("GET", self._instance_path(f"/payins/{transaction_id}"))
        return self._map_payin(data, "") if data is not None else None

    async def register_fiat_account(
        self, input: RegisterFiatAccountInput
    ) -> RegisteredFiatAccount:
        account = input.bank_account
        data = await self._request(
            "POST",
            self._instance_path(f"/receivers/{input.customer_id}/bank-accounts"),
            json_body={
                "type": "spei_bitso",
                "name": account.beneficiary,
                "beneficiary_name": account.beneficiary,
                "spei_protocol": "clabe",
                # Institution code is derived from the CLABE bank prefix
                "spei_institution_code": f"40{account.clabe[:3]}",
                "spei_clabe": account.clabe,
            },
        )
        return RegisteredFiatAccount(
            id=data["id"],
            customer_id=input.customer_id,
            type=data.get("type", "spei_bitso"),
            status="active",
            created_at=data.get("created_at") or utcnow_iso(),
        )

    async def get_fiat_accounts(self, customer_id: str) -> list[SavedFiatAccount]:
        data = await self._request_or_none(
            "GET", self._instance_path(f"/receivers/{customer_id}/bank-accounts")
        )
        if not data:
            return []
        return [
            SavedFiatAccount(
                id=item["id"],
                type=item.get("type", ""),
                account_number=item.get("spei_clabe") or "",
                account_holder_name=item.get("beneficiary_name") or item.get("name", ""),
                created_at=item.get("created_at", ""),
            )
            for item in data
        ]

    async def create_offramp(self, input: CreateOffRampInput) -> OffRampTransaction:
        """Authorize a Stellar payout for a quote.

        The payout is keyed by the quote id until it is submitted. The
        authorized envelope travels in ``signable_transaction`` for the payout
        submission step.
        """
        data = await self._request(
            "POST",
            self._instance_path("/payouts/stellar/authorize"),
            json_body={
                "quote_id": input.quote_id,
                "sender_wallet_address": input.stellar_address,
            },
        )

        info = input.bank_account_info
        return OffRampTransaction(
            id=input.quote_id,
            customer_id=input.customer_id,
            quote_id=input.quote_id,
            status=TransactionStatus.PENDING,
            from_amount=input.amount,
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            stellar_address=input.stellar_address,
            bank_account=BankAccount(
                id=input.fiat_account_id,
                bank_name=info.bank_name if info else "",
                account_number=info.account_number if info else "",
                clabe=info.clabe if info else "",
                beneficiary=info.beneficiary if info else "",
            ),
            signable_transaction=data.get("transaction_hash"),
        )

    async def get_offramp_transaction(self, transaction_id: str) -> Optional[OffRampTransaction]:
        data = await self._request_or_none("GET", self._instance_path(f"/payouts/{transaction_id}"))
        return self._map_payout(data) if data is not None else None

    async def get_kyc_url(
        self,
        customer_id: str,
        public_key: Optional[str] = None,
        bank_account_id: Optional[str] = None,
    ) -> str:
        """KYC starts with the ToS redirect."""
        return await self.generate_tos_url()

    async def get_kyc_status(self, customer_id: str, public_key: Optional[str] = None) -> KycStatus:
        customer = await self.get_customer(customer_id)
        if customer is None:
            return KycStatus.NOT_STARTED
        return customer.kyc_status

    # ======================
    # Onboarding
    # ======================

    async def generate_tos_url(self, redirect_url: Optional[str] = None) -> str:
        """Create a ToS acceptance URL.

        The URL must be opened in the user's browser. Server-side requests
        to it are ignored by BlindPay.
        """
        data = await self._request(
            "POST",
            self._external_instance_path("/tos"),
            json_body={"idempotency_key": str(uuid.uuid4())},
        )
        url = data["url"]
        if redirect_url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}redirect_url={urlquote(redirect_url, safe='')}"
        return url

    async def create_receiver(self, data: dict) -> Customer:
        """Create a receiver from an accepted ``tos_id`` plus KYC data."""
        response = await self._request("POST", self._instance_path("/receivers"), json_body=data)
        logger.info(f"[BlindPay] Created receiver {response['id']}")
        return Customer(
            id=response["id"],
            email=response.get("email") or data.get("email", ""),
            kyc_status=_map_receiver_status(response.get("kyc_status")),
            created_at=response.get("created_at") or utcnow_iso(),
            updated_at=response.get("updated_at") or utcnow_iso(),
        )

    async def register_blockchain_wallet(
        self, receiver_id: str, address: str, name: Optional[str] = None
    ) -> BlockchainWallet:
        """Register a Stellar address for a receiver.

        Uses the direct method (``is_account_abstraction``), since the address
        comes from an already connected wallet.
        """
        data = await self._request(
            "POST",
            self._instance_path(f"/receivers/{receiver_id}/blockchain-wallets"),
            json_body={
                "name": name or DEFAULT_WALLET_NAME,
                "network": self.network,
                "is_account_abstraction": True,
                "address": address,
            },
        )
        return self._map_wallet(data, receiver_id)

    async def get_blockchain_wallets(self, receiver_id: str) -> list[BlockchainWallet]:
        data = await self._request(
            "GET", self._instance_path(f"/receivers/{receiver_id}/blockchain-wallets")
        )
        return [self._map_wallet(item, receiver_id) for item in data or []]

    async def submit_payout(self, transaction: OffRampTransaction) -> OffRampTransaction:
        """Hand an authorized payout back to BlindPay for settlement."""
        if not transaction.signable_transaction:
            raise AnchorError(
                "Payout has not been authorized", "PAYOUT_NOT_AUTHORIZED", 400
            )

        data = await self._request(
            "POST",
            self._instance_path("/payouts/stellar"),
            json_body={
                "quote_id": transaction.quote_id,
                "signed_transaction": transaction.signable_transaction,
                "sender_wallet_address": transaction.stellar_address,
            },
        )
        logger.info(f"[BlindPay] Submitted payout {data['id']} for quote {transaction.quote_id}")

        submitted = self._map_payout(data, transaction.customer_id)
        submitted.bank_account = transaction.bank_account
        return submitted
