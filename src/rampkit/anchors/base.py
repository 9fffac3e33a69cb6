"""Anchor provider base interface.

Every provider client implements :class:`Anchor`. Behaviour that only some
providers offer is reached through :class:`AnchorExtensions`, whose slots are
``None`` when the provider lacks the extension.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from rampkit.anchors.capabilities import AnchorCapabilities, get_capabilities
from rampkit.anchors.models import (
    BlockchainWallet,
    CreateCustomerInput,
    CreateOffRampInput,
    CreateOnRampInput,
    Customer,
    GetQuoteInput,
    KycStatus,
    OffRampTransaction,
    OnRampTransaction,
    Quote,
    RegisteredFiatAccount,
    RegisterFiatAccountInput,
    SavedFiatAccount,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class AnchorError(Exception):
    """Structured provider error with a machine code and HTTP-like status."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"AnchorError(code={self.code!r}, status_code={self.status_code}, message={self.message!r})"

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def not_supported(provider: str, operation: str) -> AnchorError:
    return AnchorError(
        f"{provider} does not support {operation}",
        "NOT_SUPPORTED",
        501,
    )


# ======================
# Extension interfaces
# ======================


class KycFormExtension(ABC):
    """Programmatic KYC submission (data, documents, review)."""

    @abstractmethod
    async def get_kyc_requirements(self, country: str = "MX") -> dict:
        raise NotImplementedError()

    @abstractmethod
    async def submit_kyc_data(self, customer_id: str, data: dict) -> dict:
        raise NotImplementedError()

    @abstractmethod
    async def submit_kyc_file(
        self,
        customer_id: str,
        submission_id: str,
        file_type: str,
        content: bytes,
        filename: str,
    ) -> dict:
        raise NotImplementedError()

    @abstractmethod
    async def finalize_kyc_submission(self, customer_id: str, submission_id: str) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def get_kyc_submission(self, customer_id: str) -> Optional[dict]:
        raise NotImplementedError()

    @abstractmethod
    async def get_kyc_submission_status(self, customer_id: str, submission_id: str) -> dict:
        raise NotImplementedError()


class ProgrammaticKycExtension(ABC):
    """KYC by direct API calls instead of the hosted onboarding page."""

    @abstractmethod
    async def submit_kyc_identity(self, customer_id: str, public_key: str, identity: dict) -> Any:
        raise NotImplementedError()

    @abstractmethod
    async def submit_kyc_documents(
        self, customer_id: str, public_key: str, documents: list[dict]
    ) -> Any:
        raise NotImplementedError()

    @abstractmethod
    async def accept_agreements(
        self, customer_id: str, public_key: str, bank_account_id: Optional[str] = None
    ) -> Any:
        raise NotImplementedError()


class TermsOfServiceExtension(ABC):
    """Terms-of-Service acceptance followed by KYC-linked receiver creation.

    This is the real onboarding call for providers whose ``create_customer``
    only returns a local placeholder.
    """

    @abstractmethod
    async def generate_tos_url(self, redirect_url: Optional[str] = None) -> str:
        raise NotImplementedError()

    @abstractmethod
    async def create_receiver(self, data: dict) -> Customer:
        raise NotImplementedError()


class WalletRegistrationExtension(ABC):
    """Register ledger addresses with the provider before on-ramp."""

    @abstractmethod
    async def register_blockchain_wallet(
        self, receiver_id: str, address: str, name: Optional[str] = None
    ) -> BlockchainWallet:
        raise NotImplementedError()

    @abstractmethod
    async def get_blockchain_wallets(self, receiver_id: str) -> list[BlockchainWallet]:
        raise NotImplementedError()


class PayoutSubmissionExtension(ABC):
    """Hand an authorized off-ramp back to the provider for settlement."""

    @abstractmethod
    async def submit_payout(self, transaction: OffRampTransaction) -> OffRampTransaction:
        raise NotImplementedError()


class SandboxExtension(ABC):
    """Sandbox-only simulation hooks. Unsupported actions raise NOT_SUPPORTED."""

    async def simulate_fiat_received(self, order_id: str) -> int:
        raise not_supported(type(self).__name__, "fiat payment simulation")

    async def complete_kyc(self, submission_id: str) -> None:
        raise not_supported(type(self).__name__, "sandbox KYC completion")


@dataclass(frozen=True)
class AnchorExtensions:
    """Provider-specific extension slots."""

    kyc_form: Optional[KycFormExtension] = None
    programmatic_kyc: Optional[ProgrammaticKycExtension] = None
    terms_of_service: Optional[TermsOfServiceExtension] = None
    wallet_registration: Optional[WalletRegistrationExtension] = None
    payout_submission: Optional[PayoutSubmissionExtension] = None
    sandbox: Optional[SandboxExtension] = None


# ======================
# Anchor interface
# ======================


class Anchor(ABC):
    """Common interface over all fiat on/off-ramp providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider id (e.g. ``etherfuse``)."""
        raise NotImplementedError()

    @property
    def capabilities(self) -> AnchorCapabilities:
        return get_capabilities(self.name)

    @property
    def extensions(self) -> AnchorExtensions:
        return AnchorExtensions()

    @abstractmethod
    async def create_customer(self, input: CreateCustomerInput) -> Customer:
        """Create a customer.

        Not guaranteed to perform a remote call; see
        :func:`rampkit.anchors.capabilities.looks_like_provider_customer_id`.
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Fetch a customer, or ``None`` if it does not exist."""
        raise NotImplementedError()

    async def get_customer_by_email(
        self, email: str, country: str = "MX"
    ) -> Optional[Customer]:
        """Look up a customer by email. Only with ``supports_email_lookup``."""
        raise not_supported(self.name, "customer lookup by email")

    @abstractmethod
    async def get_quote(self, input: GetQuoteInput) -> Quote:
        raise NotImplementedError()

    @abstractmethod
    async def create_onramp(self, input: CreateOnRampInput) -> OnRampTransaction:
        raise NotImplementedError()

    @abstractmethod
    async def get_onramp_transaction(self, transaction_id: str) -> Optional[OnRampTransaction]:
        """Fetch an on-ramp, or ``None`` if it does not exist."""
        raise NotImplementedError()

    @abstractmethod
    async def register_fiat_account(
        self, input: RegisterFiatAccountInput
    ) -> RegisteredFiatAccount:
        raise NotImplementedError()

    @abstractmethod
    async def get_fiat_accounts(self, customer_id: str) -> list[SavedFiatAccount]:
        """List saved bank accounts; empty when the customer has none."""
        raise NotImplementedError()

    @abstractmethod
    async def create_offramp(self, input: CreateOffRampInput) -> OffRampTransaction:
        raise NotImplementedError()

    @abstractmethod
    async def get_offramp_transaction(self, transaction_id: str) -> Optional[OffRampTransaction]:
        """Fetch an off-ramp, or ``None`` if it does not exist."""
        raise NotImplementedError()

    @abstractmethod
    async def get_kyc_url(
        self,
        customer_id: str,
        public_key: Optional[str] = None,
        bank_account_id: Optional[str] = None,
    ) -> str:
        """URL for the provider's KYC presentation (iframe, form or redirect)."""
        raise NotImplementedError()

    @abstractmethod
    async def get_kyc_status(
        self, customer_id: str, public_key: Optional[str] = None
    ) -> KycStatus:
        raise NotImplementedError()


class HttpAnchorClient(Anchor):
    """Anchor backed by a JSON REST API.

    ``http_client`` is injectable so the same client runs against a shared
    connection pool, a test transport or a short-lived client per request.
    """

    log_prefix = "Anchor"

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._http_client = http_client
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        """Authentication headers for every request."""
        return {}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.request(
                    method, url, timeout=self.timeout, **kwargs
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"[{self.log_prefix}] {method} {url} failed: {e}")
            raise AnchorError(
                f"{self.log_prefix} request failed: {e}", "NETWORK_ERROR", 502
            ) from e

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Optional[dict] = None,
        url: Optional[str] = None,
    ) -> Any:
        """Send an authenticated JSON request.

        Returns:
            Parsed JSON body, or None for an empty body

        Raises:
            AnchorError: On any non-2xx response
        """
        url = url or f"{self.base_url}{path}"
        logger.debug(f"[{self.log_prefix}] {method} {url} {json.dumps(json_body) if json_body else ''}")

        headers = {"Content-Type": "application/json", **self._headers()}
        response = await self._send(
            method,
            url,
            headers=headers,
            json=json_body,
            params=params,
        )

        if not response.is_success:
            raise self._error_from_response(response)

        text = response.text
        logger.debug(f"[{self.log_prefix}] Response: {text or '(empty)'}")
        if not text:
            return None
        return response.json()

    async def _request_or_none(self, method: str, path: str, **kwargs: Any) -> Any:
        """Like :meth:`_request` but a 404 becomes ``None``."""
        try:
            return await self._request(method, path, **kwargs)
        except AnchorError as e:
            if e.is_not_found:
                return None
            raise

    def _error_from_response(self, response: httpx.Response) -> AnchorError:
        """Build an AnchorError from a ``{"error": {"code", "message"}}`` body."""
        text = response.text
        log = logger.warning if response.status_code == 404 else logger.error
        log(f"[{self.log_prefix}] Error {response.status_code}: {text}")

        code = "UNKNOWN_ERROR"
        message = ""
        try:
            data = response.json()
        except ValueError:
            data = None

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                code = error.get("code") or code
                message = error.get("message") or ""
            elif isinstance(error, str):
                message = error
            message = message or data.get("message") or ""

        return AnchorError(
            message or text or f"{self.log_prefix} API error: {response.status_code}",
            code,
            response.status_code,
        )
