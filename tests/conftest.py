"""Pytest configuration and fixtures."""

import base64
import json
import os
import struct
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import httpx
import pytest
import pytest_asyncio

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ.pop("WEBHOOK_SECRET", None)

from rampkit.anchors.base import (
    Anchor,
    AnchorError,
    AnchorExtensions,
    PayoutSubmissionExtension,
    WalletRegistrationExtension,
)
from rampkit.anchors.factory import AnchorFactory
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
    PaymentInstructions,
    Quote,
    RegisteredFiatAccount,
    RegisterFiatAccountInput,
    SavedFiatAccount,
    TransactionStatus,
)
from rampkit.config import Settings
from rampkit.flow.signing import LedgerSubmitter, PaymentBuilder, PaymentRequest, TransactionSigner
from rampkit.sep.xdr import encode_account_id

Reply = Union[httpx.Response, tuple[int, Any], Callable[[httpx.Request], httpx.Response]]


class MockAPI:
    """Route table for httpx.MockTransport that records every request."""

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *replies: Reply) -> None:
        """Register replies for a route. The last reply repeats."""
        self.routes[(method.upper(), path)] = list(replies)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={"error": {"code": "NOT_FOUND", "message": "no route"}})

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply):
            return reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        status, body = reply
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def last_json(self, method: str, path: str) -> Any:
        return json.loads(self.calls(method, path)[-1].content)


@pytest.fixture
def mock_api() -> MockAPI:
    return MockAPI()


@pytest_asyncio.fixture
async def http_client(mock_api):
    """HTTP client whose requests are answered by ``mock_api``."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(mock_api.handler)) as client:
        yield client


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        etherfuse_api_key="ef_test_key",
        etherfuse_base_url="https://etherfuse.test",
        alfredpay_api_key="ap_key",
        alfredpay_api_secret="ap_secret",
        alfredpay_base_url="https://alfredpay.test/api",
        blindpay_api_key="bp_key",
        blindpay_instance_id="in_123",
        blindpay_base_url="https://blindpay.test",
        webhook_secret=None,
    )


# ======================
# Anchor test double
# ======================


def _in(minutes: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


class FakeWallets(WalletRegistrationExtension):
    def __init__(self, anchor: "FakeAnchor"):
        self.anchor = anchor
        self.wallets: list[BlockchainWallet] = []

    async def register_blockchain_wallet(self, receiver_id, address, name=None):
        self.anchor.calls.append(("register_blockchain_wallet", receiver_id))
        wallet = BlockchainWallet(
            id=f"bw_{len(self.wallets) + 1}", receiver_id=receiver_id, address=address
        )
        self.wallets.append(wallet)
        return wallet

    async def get_blockchain_wallets(self, receiver_id):
        self.anchor.calls.append(("get_blockchain_wallets", receiver_id))
        return list(self.wallets)


class FakePayouts(PayoutSubmissionExtension):
    def __init__(self, anchor: "FakeAnchor"):
        self.anchor = anchor

    async def submit_payout(self, transaction):
        self.anchor.calls.append(("submit_payout", transaction.quote_id))
        self.anchor.settling = True
        return transaction.model_copy(
            update={"id": "po_1", "status": TransactionStatus.PROCESSING}
        )


class FakeAnchor(Anchor):
    """In-memory anchor.

    Off-ramps become signable after ``signable_after`` polls (deferred
    signing) and reach ``final_status`` ``polls_to_terminal`` polls after
    settlement starts.
    """

    def __init__(
        self,
        provider_id: str = "etherfuse",
        signable_after: int = 0,
        polls_to_terminal: int = 1,
        final_status: TransactionStatus = TransactionStatus.COMPLETED,
        quote_ttl_minutes: float = 5,
    ):
        self.provider_id = provider_id
        self.signable_after = signable_after
        self.polls_to_terminal = polls_to_terminal
        self.final_status = final_status
        self.quote_ttl_minutes = quote_ttl_minutes
        self.calls: list[tuple] = []
        self.quote_inputs: list[GetQuoteInput] = []
        self.fail_on: dict[str, AnchorError] = {}
        self.polls = 0
        self.settling = False
        self._settled_polls = 0
        self._quotes = 0
        self.wallets = FakeWallets(self)
        self.payouts = FakePayouts(self)

    @property
    def name(self) -> str:
        return self.provider_id

    @property
    def extensions(self) -> AnchorExtensions:
        if self.capabilities.requires_anchor_payout_submission:
            return AnchorExtensions(wallet_registration=self.wallets, payout_submission=self.payouts)
        return AnchorExtensions()

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        error = self.fail_on.pop(operation, None)
        if error is not None:
            raise error

    def called(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def _progress(self) -> TransactionStatus:
        if not self.settling:
            return TransactionStatus.PENDING
        self._settled_polls += 1
        if self._settled_polls >= self.polls_to_terminal:
            return self.final_status
        return TransactionStatus.PROCESSING

    async def create_customer(self, input: CreateCustomerInput) -> Customer:
        self._record("create_customer", input.email)
        return Customer(id="cust_1", email=input.email)

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        self._record("get_customer", customer_id)
        return Customer(id=customer_id, email="user@example.com", kyc_status=KycStatus.APPROVED)

    async def get_quote(self, input: GetQuoteInput) -> Quote:
        self._record("get_quote", input.customer_id)
        self.quote_inputs.append(input)
        self._quotes += 1
        return Quote(
            id=f"quote_{self._quotes}",
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            from_amount=input.amount,
            to_amount="50.00",
            exchange_rate="0.05",
            fee="0",
            expires_at=_in(self.quote_ttl_minutes),
        )

    async def create_onramp(self, input: CreateOnRampInput) -> OnRampTransaction:
        self._record("create_onramp", input.quote_id)
        self.settling = True
        return OnRampTransaction(
            id="onramp_1",
            customer_id=input.customer_id,
            quote_id=input.quote_id,
            from_amount=input.amount,
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            stellar_address=input.stellar_address,
            payment_instructions=PaymentInstructions(
                clabe="646180157000000004", reference="REF123", amount=input.amount
            ),
        )

    async def get_onramp_transaction(self, transaction_id: str) -> Optional[OnRampTransaction]:
        self._record("get_onramp_transaction", transaction_id)
        self.polls += 1
        return OnRampTransaction(id=transaction_id, status=self._progress())

    async def register_fiat_account(self, input: RegisterFiatAccountInput) -> RegisteredFiatAccount:
        self._record("register_fiat_account", input.customer_id)
        return RegisteredFiatAccount(
            id="bank_1", customer_id=input.customer_id, type="SPEI", status="active"
        )

    async def get_fiat_accounts(self, customer_id: str) -> list[SavedFiatAccount]:
        self._record("get_fiat_accounts", customer_id)
        return []

    async def create_offramp(self, input: CreateOffRampInput) -> OffRampTransaction:
        self._record("create_offramp", input.quote_id)
        caps = self.capabilities
        transaction = OffRampTransaction(
            id="offramp_1",
            customer_id=input.customer_id,
            quote_id=input.quote_id,
            from_amount=input.amount,
            from_currency=input.from_currency,
            to_currency=input.to_currency,
            stellar_address=input.stellar_address,
        )
        if caps.requires_anchor_payout_submission:
            transaction.signable_transaction = "AAAA_authorized_payout"
        elif caps.requires_offramp_signing and not caps.deferred_offramp_signing:
            transaction.signable_transaction = "AAAA_burn"
        elif not caps.requires_offramp_signing:
            transaction.stellar_address = "GDEPOSITADDRESS"
            transaction.memo = "memo-123"
        return transaction

    async def get_offramp_transaction(self, transaction_id: str) -> Optional[OffRampTransaction]:
        self._record("get_offramp_transaction", transaction_id)
        self.polls += 1
        status = self._progress()
        signable = "AAAA_burn" if self.polls > self.signable_after else None
        return OffRampTransaction(id=transaction_id, status=status, signable_transaction=signable)

    async def get_kyc_url(self, customer_id, public_key=None, bank_account_id=None) -> str:
        self._record("get_kyc_url", customer_id)
        return f"https://kyc.example/{customer_id}"

    async def get_kyc_status(self, customer_id, public_key=None) -> KycStatus:
        self._record("get_kyc_status", customer_id)
        return KycStatus.APPROVED


class RecordingSigner(TransactionSigner):
    def __init__(self):
        self.signed: list[tuple[str, str]] = []

    async def sign(self, xdr: str, network_passphrase: str) -> str:
        self.signed.append((xdr, network_passphrase))
        return f"signed:{xdr}"


class RecordingSubmitter(LedgerSubmitter):
    def __init__(self, on_submit: Optional[Callable[[], None]] = None):
        self.submitted: list[str] = []
        self.on_submit = on_submit

    async def submit(self, signed_xdr: str) -> str:
        self.submitted.append(signed_xdr)
        if self.on_submit is not None:
            self.on_submit()
        return "ledger_hash_1"


class RecordingPaymentBuilder(PaymentBuilder):
    def __init__(self):
        self.requests: list[PaymentRequest] = []

    async def build_payment(self, request: PaymentRequest) -> str:
        self.requests.append(request)
        return "AAAA_payment"


@pytest.fixture
def make_anchor() -> Callable[..., FakeAnchor]:
    return FakeAnchor


@pytest.fixture
def signer() -> RecordingSigner:
    return RecordingSigner()


@pytest.fixture
def payment_builder() -> RecordingPaymentBuilder:
    return RecordingPaymentBuilder()


@pytest.fixture
def factory(settings) -> AnchorFactory:
    return AnchorFactory(settings)


@pytest.fixture
def make_submitter() -> Callable[..., RecordingSubmitter]:
    return RecordingSubmitter


# ======================
# SEP test anchor
# ======================

# RFC 8032 test vector public keys
SEP_SERVER_KEY = bytes.fromhex("d75a980182b10ab7d54bfed3c964073a0ee172f3daa62325af021a68f707511a")
SEP_ACCOUNT_KEY = bytes.fromhex("3d4017c3e843895a92b70aa74d1b7ebc9c982ccf2ec4968cc0cd55f12af4660c")

SEP_SERVER_ACCOUNT = encode_account_id(SEP_SERVER_KEY)
SEP_USER_ACCOUNT = encode_account_id(SEP_ACCOUNT_KEY)

TESTANCHOR_TOML = f"""
NETWORK_PASSPHRASE = "Test SDF Network ; September 2015"
SIGNING_KEY = "{SEP_SERVER_ACCOUNT}"
WEB_AUTH_ENDPOINT = "https://testanchor.stellar.org/auth"
TRANSFER_SERVER = "https://testanchor.stellar.org/sep6/"
TRANSFER_SERVER_SEP0024 = "https://testanchor.stellar.org/sep24"
KYC_SERVER = "https://testanchor.stellar.org/kyc"
DIRECT_PAYMENT_SERVER = "https://testanchor.stellar.org/sep31"
ANCHOR_QUOTE_SERVER = "https://testanchor.stellar.org/sep38"

[[CURRENCIES]]
code = "SRT"
issuer = "{SEP_SERVER_ACCOUNT}"
status = "test"
"""


def _opaque(data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + data + b"\x00" * (-len(data) % 4)


def build_challenge(
    server_key: bytes = SEP_SERVER_KEY,
    account_key: bytes = SEP_ACCOUNT_KEY,
    name: str = "testanchor.stellar.org auth",
    sequence: int = 0,
    max_time: Optional[int] = None,
    op_type: int = 10,
) -> str:
    """Base64 envelope shaped like an anchor's SEP-10 challenge."""
    now = int(time.time())
    max_time = now + 900 if max_time is None else max_time
    envelope = struct.pack(">i", 2)
    envelope += struct.pack(">i", 0) + server_key
    envelope += struct.pack(">Iq", 100, sequence)
    envelope += struct.pack(">iQQ", 1, now, max_time)
    envelope += struct.pack(">i", 0)
    envelope += struct.pack(">I", 1)
    envelope += struct.pack(">ii", 1, 0) + account_key
    envelope += struct.pack(">i", op_type)
    envelope += _opaque(name.encode())
    envelope += struct.pack(">i", 1) + _opaque(b"n" * 48)
    # Ext and signatures, not read by the decoder
    envelope += struct.pack(">iI", 0, 0)
    return base64.b64encode(envelope).decode()


def build_jwt(sub: str = SEP_USER_ACCOUNT, expires_in: int = 3600) -> str:
    def segment(obj: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    now = int(time.time())
    claims = {
        "iss": "https://testanchor.stellar.org/auth",
        "sub": sub,
        "iat": now,
        "exp": now + expires_in,
        "jti": "challenge_hash",
    }
    return f"{segment({'alg': 'HS256', 'typ': 'JWT'})}.{segment(claims)}.signature"


@pytest.fixture
def make_challenge() -> Callable[..., str]:
    return build_challenge


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    return build_jwt


@pytest.fixture
def testanchor(mock_api) -> MockAPI:
    """Mock API serving the test anchor's stellar.toml."""
    mock_api.add(
        "GET", "/.well-known/stellar.toml", httpx.Response(200, text=TESTANCHOR_TOML)
    )
    return mock_api


@pytest.fixture
def sep_accounts() -> tuple[str, str]:
    """(anchor signing account, user account)"""
    return SEP_SERVER_ACCOUNT, SEP_USER_ACCOUNT
