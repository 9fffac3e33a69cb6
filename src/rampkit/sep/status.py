"""SEP-6/24/31 transaction statuses."""

from enum import Enum

from rampkit.anchors.models import TransactionStatus


class SepStatus(str, Enum):
    INCOMPLETE = "incomplete"
    PENDING_USER_TRANSFER_START = "pending_user_transfer_start"
    PENDING_USER_TRANSFER_COMPLETE = "pending_user_transfer_complete"
    PENDING_EXTERNAL = "pending_external"
    PENDING_ANCHOR = "pending_anchor"
    PENDING_STELLAR = "pending_stellar"
    PENDING_TRUST = "pending_trust"
    PENDING_USER = "pending_user"
    PENDING_CUSTOMER_INFO_UPDATE = "pending_customer_info_update"
    PENDING_TRANSACTION_INFO_UPDATE = "pending_transaction_info_update"
    # SEP-31 only
    PENDING_SENDER = "pending_sender"
    PENDING_RECEIVER = "pending_receiver"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    EXPIRED = "expired"
    ERROR = "error"
    NO_MARKET = "no_market"


PENDING_USER_STATUSES = frozenset(
    {
        "pending_user_transfer_start",
        "pending_user",
        "pending_customer_info_update",
        "pending_transaction_info_update",
    }
)

PENDING_ANCHOR_STATUSES = frozenset(
    {
        "pending_anchor",
        "pending_stellar",
        "pending_external",
        "pending_trust",
        "pending_user_transfer_complete",
        "pending_receiver",
    }
)

FAILED_STATUSES = frozenset({"error", "expired", "no_market"})

STATUS_DESCRIPTIONS = {
    "incomplete": "Transaction not yet complete",
    "pending_user_transfer_start": "Waiting for you to initiate the transfer",
    "pending_user_transfer_complete": "Transfer received, processing",
    "pending_external": "Waiting for external system",
    "pending_anchor": "Anchor is processing",
    "pending_stellar": "Waiting for Stellar network confirmation",
    "pending_trust": "Waiting for trustline to be established",
    "pending_user": "Waiting for user action",
    "pending_customer_info_update": "Additional customer info required",
    "pending_transaction_info_update": "Additional transaction info required",
    "pending_sender": "Waiting for Stellar payment from sender",
    "pending_receiver": "Processing payment to receiver",
    "completed": "Transaction complete",
    "refunded": "Transaction refunded",
    "expired": "Transaction expired",
    "error": "Transaction failed",
    "no_market": "No market for this asset pair",
}


def _value(status: str | SepStatus) -> str:
    return status.value if isinstance(status, SepStatus) else status


def is_complete(status: str | SepStatus) -> bool:
    return _value(status) == "completed"


def is_pending_user(status: str | SepStatus) -> bool:
    return _value(status) in PENDING_USER_STATUSES


def is_pending_anchor(status: str | SepStatus) -> bool:
    return _value(status) in PENDING_ANCHOR_STATUSES


def is_failed(status: str | SepStatus) -> bool:
    return _value(status) in FAILED_STATUSES


def is_refunded(status: str | SepStatus) -> bool:
    return _value(status) == "refunded"


def is_finished(status: str | SepStatus) -> bool:
    return is_complete(status) or is_failed(status) or is_refunded(status)


def is_in_progress(status: str | SepStatus) -> bool:
    return not is_finished(status)


def needs_customer_info(status: str | SepStatus) -> bool:
    return _value(status) == "pending_customer_info_update"


def needs_transaction_info(status: str | SepStatus) -> bool:
    return _value(status) == "pending_transaction_info_update"


def is_pending_payment(status: str | SepStatus) -> bool:
    """SEP-31: the sender's ledger payment has not settled yet."""
    return _value(status) in ("pending_sender", "pending_stellar")


def describe_status(status: str | SepStatus) -> str:
    value = _value(status)
    return STATUS_DESCRIPTIONS.get(value, value)


def to_transaction_status(status: str | SepStatus) -> TransactionStatus:
    """Collapse a SEP status onto the provider-neutral status set."""
    value = _value(status)
    if value == "completed":
        return TransactionStatus.COMPLETED
    if value == "refunded":
        return TransactionStatus.REFUNDED
    if value == "expired":
        return TransactionStatus.EXPIRED
    if value in FAILED_STATUSES:
        return TransactionStatus.FAILED
    if value in ("incomplete", "pending_user_transfer_start", "pending_sender"):
        return TransactionStatus.PENDING
    return TransactionStatus.PROCESSING
