"""Shared anchor data model.

All monetary amounts are decimal strings. Provider clients map their own
wire formats onto these models so callers never see provider payloads.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field, model_validator

from rampkit.utils.time import parse_timestamp, utcnow_iso


class KycStatus(str, Enum):
    """KYC verification state of a customer."""

    NOT_STARTED = "not_started"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UPDATE_REQUIRED = "update_required"


class TransactionStatus(str, Enum):
    """Normalized on/off-ramp transaction status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
        TransactionStatus.CANCELLED,
        TransactionStatus.REFUNDED,
    }
)


def is_terminal(status: TransactionStatus | str) -> bool:
    """Check whether a status belongs to the terminal set."""
    return TransactionStatus(status) in TERMINAL_STATUSES


def _coerce_decimal_string(value: Any) -> str:
    """Accept str/int/Decimal amounts and normalize to a decimal string.

    Floats are rejected so that binary rounding never leaks into amounts.
    """
    if isinstance(value, float):
        raise ValueError("amounts must be decimal strings, not floats")
    if isinstance(value, (int, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("amount must be a string")
    try:
        parsed = Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"invalid decimal amount: {value!r}") from e
    if not parsed.is_finite() or parsed < 0:
        raise ValueError(f"amount must be a non-negative number: {value!r}")
    return value


DecimalString = Annotated[str, BeforeValidator(_coerce_decimal_string)]


# ======================
# Customers
# ======================


class Customer(BaseModel):
    """Customer identity record as known to an anchor."""

    id: str
    email: str
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    # Generated at registration time by providers that need it (Etherfuse)
    bank_account_id: Optional[str] = None
    # Registered ledger wallet for providers that need it (BlindPay)
    blockchain_wallet_id: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)


class CreateCustomerInput(BaseModel):
    email: str
    country: str = "MX"
    public_key: Optional[str] = None


# ======================
# Quotes
# ======================


class Quote(BaseModel):
    """Ephemeral price lock. Invalid after ``expires_at``."""

    id: str
    from_currency: str
    to_currency: str
    from_amount: str
    to_amount: str
    exchange_rate: str
    fee: str = "0"
    expires_at: str
    created_at: str = Field(default_factory=utcnow_iso)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Compare ``expires_at`` against the local clock."""
        now = now or datetime.now(timezone.utc)
        return now >= parse_timestamp(self.expires_at)

    def seconds_until_expiry(self, now: Optional[datetime] = None) -> float:
        """Seconds until expiry (negative if expired)."""
        now = now or datetime.now(timezone.utc)
        return (parse_timestamp(self.expires_at) - now).total_seconds()


class GetQuoteInput(BaseModel):
    """Quote request. Exactly one of ``from_amount`` / ``to_amount`` is set."""

    from_currency: str
    to_currency: str
    from_amount: Optional[DecimalString] = None
    to_amount: Optional[DecimalString] = None
    # Plain or composite ("customerId:resourceId") customer id
    customer_id: Optional[str] = None
    # Used by some providers to resolve asset identifiers
    stellar_address: Optional[str] = None

    @model_validator(mode="after")
    def _one_amount(self) -> "GetQuoteInput":
        if (self.from_amount is None) == (self.to_amount is None):
            raise ValueError("exactly one of from_amount or to_amount is required")
        return self

    @property
    def amount(self) -> str:
        """The requested amount, whichever side it was given on."""
        return self.from_amount if self.from_amount is not None else self.to_amount


# ======================
# Transactions
# ======================


class PaymentInstructions(BaseModel):
    """SPEI bank transfer details the user follows to fund an on-ramp."""

    type: Literal["spei"] = "spei"
    bank_name: str = ""
    account_number: str = ""
    clabe: str = ""
    beneficiary: str = ""
    reference: str = ""
    amount: str = ""
    currency: str = ""


class BankAccount(BaseModel):
    id: str = ""
    bank_name: str = ""
    account_number: str = ""
    clabe: str = ""
    beneficiary: str = ""


class OnRampTransaction(BaseModel):
    """Fiat to ledger asset transaction."""

    id: str
    customer_id: str = ""
    quote_id: str = ""
    status: TransactionStatus = TransactionStatus.PENDING
    from_amount: str = ""
    from_currency: str = ""
    to_amount: str = ""
    to_currency: str = ""
    stellar_address: str = ""
    payment_instructions: Optional[PaymentInstructions] = None
    fee_bps: Optional[int] = None
    fee_amount: Optional[str] = None
    stellar_tx_hash: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class OffRampTransaction(BaseModel):
    """Ledger asset to fiat transaction."""

    id: str
    customer_id: str = ""
    quote_id: str = ""
    status: TransactionStatus = TransactionStatus.PENDING
    from_amount: str = ""
    from_currency: str = ""
    to_amount: str = ""
    to_currency: str = ""
    stellar_address: str = ""
    bank_account: BankAccount = Field(default_factory=BankAccount)
    fee_bps: Optional[int] = None
    fee_amount: Optional[str] = None
    memo: Optional[str] = None
    stellar_tx_hash: Optional[str] = None
    # Transaction envelope (base64 XDR) for the user or anchor to act on
    signable_transaction: Optional[str] = None
    # Anchor-hosted status page
    status_page: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class CreateOnRampInput(BaseModel):
    customer_id: str
    quote_id: str
    stellar_address: str
    from_currency: str
    to_currency: str
    amount: DecimalString
    memo: Optional[str] = None
    # Required by some providers (Etherfuse)
    bank_account_id: Optional[str] = None


class FiatAccountInput(BaseModel):
    bank_name: str = ""
    account_number: str = ""
    clabe: str
    beneficiary: str


class CreateOffRampInput(BaseModel):
    customer_id: str
    quote_id: str
    stellar_address: str
    from_currency: str
    to_currency: str
    amount: DecimalString
    fiat_account_id: str = ""
    memo: Optional[str] = None
    # Echoed into the response only; never sent to the provider
    bank_account_info: Optional[FiatAccountInput] = None


# ======================
# Fiat accounts
# ======================


class RegisterFiatAccountInput(BaseModel):
    customer_id: str
    bank_account: FiatAccountInput


class RegisteredFiatAccount(BaseModel):
    id: str
    customer_id: str
    type: str
    status: str
    created_at: str = Field(default_factory=utcnow_iso)


class SavedFiatAccount(BaseModel):
    id: str
    type: str
    account_number: str = ""
    bank_name: str = ""
    account_holder_name: str = ""
    created_at: str = ""


# ======================
# Blockchain wallets
# ======================


class BlockchainWallet(BaseModel):
    """Ledger address registered with a provider."""

    id: str
    receiver_id: str = ""
    address: str
    network: str = ""
    name: str = ""
    created_at: str = ""
