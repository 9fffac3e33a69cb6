"""Response models for the SEP endpoints.

Anchors add their own fields freely, so every model keeps unknown keys.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from rampkit.anchors.models import TransactionStatus
from rampkit.sep.status import describe_status, is_finished, to_transaction_status


class SepModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ======================
# SEP-10
# ======================


class Challenge(SepModel):
    transaction: str
    network_passphrase: Optional[str] = None


class TokenClaims(SepModel):
    """Payload of a SEP-10 JWT. Read only, never verified client-side."""

    iss: str = ""
    sub: str = ""
    iat: int = 0
    exp: int = 0
    jti: str = ""
    client_domain: Optional[str] = None
    home_domain: Optional[str] = None


# ======================
# SEP-12
# ======================


class CustomerField(SepModel):
    type: str = "string"
    description: str = ""
    choices: Optional[list[str]] = None
    optional: bool = False
    # Provided fields only
    status: Optional[str] = None
    error: Optional[str] = None


class KycCustomer(SepModel):
    id: Optional[str] = None
    status: str
    fields: dict[str, CustomerField] = Field(default_factory=dict)
    provided_fields: dict[str, CustomerField] = Field(default_factory=dict)
    message: Optional[str] = None


# ======================
# SEP-6 / SEP-24 / SEP-31
# ======================


class DepositInstructions(SepModel):
    """SEP-6 ``GET /deposit`` response."""

    how: Optional[str] = None
    instructions: dict[str, dict[str, str]] = Field(default_factory=dict)
    id: Optional[str] = None
    eta: Optional[int] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    fee_fixed: Optional[float] = None
    fee_percent: Optional[float] = None
    extra_info: Optional[dict[str, Any]] = None


class WithdrawInstructions(SepModel):
    """SEP-6 ``GET /withdraw`` response."""

    account_id: str
    memo_type: Optional[str] = None
    memo: Optional[str] = None
    id: Optional[str] = None
    eta: Optional[int] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    fee_fixed: Optional[float] = None
    fee_percent: Optional[float] = None
    extra_info: Optional[dict[str, Any]] = None


class InteractiveResponse(SepModel):
    """SEP-24 interactive deposit/withdraw response."""

    type: str = "interactive_customer_info_needed"
    url: str
    id: str


class SepTransaction(SepModel):
    id: str
    kind: Optional[str] = None
    status: str
    status_eta: Optional[int] = None
    more_info_url: Optional[str] = None
    amount_in: Optional[str] = None
    amount_in_asset: Optional[str] = None
    amount_out: Optional[str] = None
    amount_out_asset: Optional[str] = None
    amount_fee: Optional[str] = None
    amount_fee_asset: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    stellar_transaction_id: Optional[str] = None
    external_transaction_id: Optional[str] = None
    message: Optional[str] = None
    refunded: Optional[bool] = None
    from_address: Optional[str] = Field(default=None, alias="from")
    to_address: Optional[str] = Field(default=None, alias="to")
    deposit_memo: Optional[str] = None
    deposit_memo_type: Optional[str] = None
    withdraw_anchor_account: Optional[str] = None
    withdraw_memo: Optional[str] = None
    withdraw_memo_type: Optional[str] = None

    @property
    def normalized_status(self) -> TransactionStatus:
        return to_transaction_status(self.status)

    @property
    def is_terminal(self) -> bool:
        return is_finished(self.status)

    @property
    def status_description(self) -> str:
        return describe_status(self.status)


class PaymentTransaction(SepTransaction):
    """SEP-31 transaction."""

    stellar_account_id: Optional[str] = None
    stellar_memo_type: Optional[str] = None
    stellar_memo: Optional[str] = None
    required_info_message: Optional[str] = None
    required_info_updates: Optional[dict[str, Any]] = None


class PaymentCreated(SepModel):
    """SEP-31 ``POST /transactions`` response: where to send the payment."""

    id: str
    stellar_account_id: Optional[str] = None
    stellar_memo_type: Optional[str] = None
    stellar_memo: Optional[str] = None


# ======================
# SEP-38
# ======================


class QuoteFee(SepModel):
    total: str
    asset: str
    details: Optional[list[dict[str, Any]]] = None


class Price(SepModel):
    total_price: str
    price: str
    sell_amount: str
    buy_amount: str
    fee: QuoteFee


class FirmQuote(Price):
    id: str
    expires_at: str
    sell_asset: Optional[str] = None
    buy_asset: Optional[str] = None
