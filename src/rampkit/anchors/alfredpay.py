"""Alfred Pay anchor client.

MXN <-> USDC on Stellar over SPEI. KYC is collected through an inline form
(data, documents, then a final submit). For off-ramps the user builds and
signs a plain payment to the deposit address the anchor returns.

Docs: https://alfredpay.readme.io
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote as urlquote

import httpx

from rampkit.anchors.base import (
    DEFAULT_TIMEOUT,
    AnchorError,
    AnchorExtensions,
    HttpAnchorClient,
    KycFormExtension,
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
from rampkit.utils.currency import sum_amounts
from rampkit.utils.time import utcnow_iso

logger = logging.getLogger(__name__)

CHAIN = "XLM"
PAYMENT_METHOD = "SPEI"

TRANSACTION_STATUS_MAP = {
    "CREATED": TransactionStatus.PENDING,
    "PENDING": TransactionStatus.PENDING,
    "PROCESSING": TransactionStatus.PROCESSING,
    "COMPLETED": TransactionStatus.COMPLETED,
    "FAILED": TransactionStatus.FAILED,
    "EXPIRED": TransactionStatus.EXPIRED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "REFUNDED": TransactionStatus.REFUNDED,
}

KYC_FILE_TYPES = (
    "National ID Front",
    "National ID Back",
    "Passport",
    "Selfie",
    "Proof of Address",
)


@dataclass
class AlfredPayConfig:
    api_key: str
    api_secret: str
    base_url: str
    timeout: float = DEFAULT_TIMEOUT


def _map_status(status: Optional[str]) -> TransactionStatus:
    return TRANSACTION_STATUS_MAP.get((status or "").upper(), TransactionStatus.PENDING)


def _map_kyc_status(status: Optional[str]) -> KycStatus:
    try:
        return KycStatus((status or "").lower())
    except ValueError:
        return KycStatus.NOT_STARTED


class AlfredPaySandbox(SandboxExtension):
    def __init__(self, client: "AlfredPayClient"):
        self._client = client

    async def complete_kyc(self, submission_id: str) -> None:
        await self._client.send_sandbox_webhook(
            {
                "referenceId": submission_id,
                "eventType": "KYC",
                "status": "COMPLETED",
                "metadata": None,
            }
        )


class AlfredPayClient(HttpAnchorClient, KycFormExtension):
    """Client for the Alfred Pay third-party API."""

    log_prefix = "AlfredPay"

    def __init__(self, config: AlfredPayConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config.base_url, http_client=http_client, timeout=config.timeout)
        self.config = config
        self._extensions = AnchorExtensions(kyc_form=self, sandbox=AlfredPaySandbox(self))

    @property
    def name(self) -> str:
        return "alfredpay"

    @property
    def extensions(self) -> AnchorExtensions:
        return self._extensions

    def _headers(self) -> dict[str, str]:
        return {"api-key": self.config.api_key, "api-secret": self.config.api_secret}

    # ======================
    # Mapping helpers
    # ======================

    @staticmethod
    def _map_payment_instructions(
        instructions: Optional[dict], amount: str, currency: str
    ) -> Optional[PaymentInstructions]:
        if not instructions:
            return None
        return PaymentInstructions(
            clabe=instructions.get("clabe", ""),
            bank_name=instructions.get("bankName", ""),
            beneficiary=instructions.get("accountHolderName", ""),
            reference=instructions.get("reference", ""),
            amount=amount,
            currency=currency,
        )

    def _map_onramp(self, tx: dict, instructions: Optional[dict]) -> OnRampTransaction:
        return OnRampTransaction(
            id=tx["transactionId"],
            customer_id=tx.get("customerId", ""),
            quote_id=tx.get("quoteId", ""),
            status=_map_status(tx.get("status")),
            from_amount=tx.get("fromAmount", ""),
            from_currency=tx.get("fromCurrency", ""),
            to_amount=tx.get("toAmount", ""),
            to_currency=tx.get("toCurrency", ""),
            stellar_address=tx.get("depositAddress", ""),
            payment_instructions=self._map_payment_instructions(
                instructions, tx.get("fromAmount", ""), tx.get("fromCurrency", "")
            ),
            stellar_tx_hash=tx.get("txHash") or None,
            created_at=tx.get("createdAt", ""),
            updated_at=tx.get("updatedAt", ""),
        )

    @staticmethod
    def _map_offramp(data: dict) -> OffRampTransaction:
        quote = data.get("quote") or {}
        return OffRampTransaction(
            id=data["transactionId"],
            customer_id=data.get("customerId", ""),
            quote_id=quote.get("quoteId", ""),
            status=_map_status(data.get("status")),
            from_amount=data.get("fromAmount", ""),
            from_currency=data.get("fromCurrency", ""),
            to_amount=data.get("toAmount", ""),
            to_currency=data.get("toCurrency", ""),
            # Anchor's receiving address; the user pays into it with the memo
            stellar_address=data.get("depositAddress", ""),
            bank_account=BankAccount(id=data.get("fiatAccountId") or ""),
            memo=data.get("memo") or None,
            stellar_tx_hash=data.get("txHash") or None,
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )

    # ======================
    # Anchor interface
    # ======================

    async def create_customer(self, input: CreateCustomerInput) -> Customer:
        data = await self._request(
            "POST",
            "/customers/create",
            json_body={"email": input.email, "type": "INDIVIDUAL", "country": input.country},
        )
        # The create response only carries the id and timestamp
        return Customer(
            id=data["customerId"],
            email=input.email,
            created_at=data.get("createdAt", ""),
            updated_at=data.get("createdAt", ""),
        )

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        data = await self._request_or_none("GET", f"/customers/{customer_id}")
        if data is None:
            return None
        return Customer(
            id=data["id"],
            email=data.get("email", ""),
            kyc_status=_map_kyc_status(data.get("kyc_status")),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    async def get_customer_by_email(self, email: str, country: str = "MX") -> Optional[Customer]:
        """Find a customer by email and country.

        The endpoint only returns the id, so KYC status is ``not_started``
        until refreshed with :meth:`get_customer`.
        """
        data = await self._request_or_none(
            "GET", f"/customers/find/{urlquote(email, safe='')}/{country}"
        )
        if data is None:
            return None
        return Customer(id=data["customerId"], email=email)

    async def get_quote(self, input: GetQuoteInput) -> Quote:
        body = {
            "fromCurrency": input.from_currency,
            "toCurrency": input.to_currency,
            "chain": CHAIN,
            "paymentMethodType": PAYMENT_METHOD,
        }
        if input.from_amount is not None:
            body["fromAmount"] = input.from_amount
        else:
            body["toAmount"] = input.to_amount

        data = await self._request("POST", "/quotes", json_body=body)

        return Quote(
            id=data["quoteId"],
            from_currency=data["fromCurrency"],
            to_currency=data["toCurrency"],
            from_amount=data["fromAmount"],
            to_amount=data["toAmount"],
            exchange_rate=data["rate"],
            fee=sum_amounts([fee.get("amount", "0") for fee in data.get("fees", [])]),
            expires_at=data["expiration"],
            created_at=utcnow_iso(),
        )

    async def create_onramp(self, input: CreateOnRampInput) -> OnRampTransaction:
        data = await self._request(
            "POST",
            "/onramp",
            json_body={
                "customerId": input.customer_id,
                "quoteId": input.quote_id,
                "fromCurrency": input.from_currency,
                "toCurrency": input.to_currency,
                "amount": input.amount,
                "chain": CHAIN,
                "paymentMethodType": PAYMENT_METHOD,
                "depositAddress": input.stellar_address,
                "memo": input.memo or "",
                "onrampTransactionRequiredFieldsJson": {},
            },
        )
        # POST nests the transaction; GET returns it flat
        return self._map_onramp(data["transaction"], data.get("fiatPaymentInstructions"))

    async def get_onramp_transaction(self, transaction_id: str) -> Optional[OnRampTransaction]:
        data = await self._request_or_none("GET", f"/onramp/{transaction_id}")
        if data is None:
            return None
        return self._map_onramp(data, data.get("fiatPaymentInstructions"))

    async def register_fiat_account(
        self, input: RegisterFiatAccountInput
    ) -> RegisteredFiatAccount:
        account = input.bank_account
        data = await self._request(
            "POST",
            "/fiatAccounts",
            json_body={
                "customerId": input.customer_id,
                "type": PAYMENT_METHOD,
                "fiatAccountFields": {
                    "accountNumber": account.clabe,
                    "accountType": "CHECKING",
                    "accountName": account.beneficiary,
                    "accountBankCode": account.bank_name,
                    "accountAlias": account.beneficiary,
                    "networkIdentifier": account.clabe,
                    "metadata": {"accountHolderName": account.beneficiary},
                },
                "isExternal": True,
            },
        )
        return RegisteredFiatAccount(
            id=data["fiatAccountId"],
            customer_id=data.get("customerId", input.customer_id),
            type=data.get("type", PAYMENT_METHOD),
            status=data.get("status", ""),
            created_at=data.get("createdAt", ""),
        )

    async def get_fiat_accounts(self, customer_id: str) -> list[SavedFiatAccount]:
        data = await self._request_or_none(
            "GET", "/fiatAccounts", params={"customerId": customer_id}
        )
        if not data:
            return []
        return [
            SavedFiatAccount(
                id=item["fiatAccountId"],
                type=item.get("type", PAYMENT_METHOD),
                account_number=item.get("accountNumber", ""),
                bank_name=item.get("bankName", ""),
                account_holder_name=(item.get("metadata") or {}).get("accountHolderName")
                or item.get("accountAlias")
                or item.get("accountName", ""),
                created_at=item.get("createdAt", ""),
            )
            for item in data
        ]

    async def create_offramp(self, input: CreateOffRampInput) -> OffRampTransaction:
        """Create a USDC -> MXN off-ramp.

        The response carries the deposit address and memo the user's payment
        must use.
        """
        data = await self._request(
            "POST",
            "/offramp",
            json_body={
                "customerId": input.customer_id,
                "quoteId": input.quote_id,
                "fiatAccountId": input.fiat_account_id,
                "fromCurrency": input.from_currency,
                "toCurrency": input.to_currency,
                "amount": input.amount,
                "chain": CHAIN,
                "memo": input.memo or "",
                "originAddress": input.stellar_address,
            },
        )
        transaction = self._map_offramp(data)
        if not transaction.quote_id:
            transaction.quote_id = input.quote_id
        return transaction

    async def get_offramp_transaction(self, transaction_id: str) -> Optional[OffRampTransaction]:
        data = await self._request_or_none("GET", f"/offramp/{transaction_id}")
        return self._map_offramp(data) if data is not None else None

    async def get_kyc_url(
        self,
        customer_id: str,
        public_key: Optional[str] = None,
        bank_account_id: Optional[str] = None,
        country: str = "MX",
    ) -> str:
        data = await self._request("GET", f"/customers/{customer_id}/kyc/{country}/url")
        return data["verification_url"]

    async def get_kyc_status(self, customer_id: str, public_key: Optional[str] = None) -> KycStatus:
        customer = await self.get_customer(customer_id)
        if customer is None:
            raise AnchorError("Customer not found", "CUSTOMER_NOT_FOUND", 404)
        return customer.kyc_status

    # ======================
    # KYC form extension
    # ======================

    async def get_kyc_requirements(self, country: str = "MX") -> dict:
        return await self._request("GET", "/kycRequirements", params={"country": country})

    async def submit_kyc_data(self, customer_id: str, data: dict) -> dict:
        """Submit personal data. Upload files next, then finalize."""
        return await self._request(
            "POST", f"/customers/{customer_id}/kyc", json_body={"kycSubmission": data}
        )

    async def submit_kyc_file(
        self,
        customer_id: str,
        submission_id: str,
        file_type: str,
        content: bytes,
        filename: str,
    ) -> dict:
        """Upload one KYC document as multipart form data."""
        if file_type not in KYC_FILE_TYPES:
            raise AnchorError(f"Unsupported KYC file type: {file_type}", "INVALID_FILE_TYPE", 400)

        url = f"{self.base_url}/customers/{customer_id}/kyc/{submission_id}/files"
        logger.debug(f"[AlfredPay] POST {url} (file upload: {file_type})")

        response = await self._send(
            "POST",
            url,
            headers=self._headers(),
            data={"fileType": file_type},
            files={"fileBody": (filename, content)},
        )
        if not response.is_success:
            raise self._error_from_response(response)
        return response.json()

    async def finalize_kyc_submission(self, customer_id: str, submission_id: str) -> None:
        await self._request("POST", f"/customers/{customer_id}/kyc/{submission_id}/submit")

    async def get_kyc_submission(self, customer_id: str) -> Optional[dict]:
        return await self._request_or_none("GET", f"/customers/kyc/{customer_id}")

    async def get_kyc_submission_status(self, customer_id: str, submission_id: str) -> dict:
        return await self._request(
            "GET", f"/customers/{customer_id}/kyc/{submission_id}/status"
        )

    # ======================
    # Sandbox
    # ======================

    async def send_sandbox_webhook(self, webhook: dict) -> None:
        """Ask the sandbox to emit a webhook event (KYC, ONRAMP, OFFRAMP)."""
        await self._request("POST", "/webhooks", json_body=webhook)
