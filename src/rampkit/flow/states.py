"""Flow steps, off-ramp phases and flow state."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from rampkit.anchors.capabilities import AnchorCapabilities
from rampkit.anchors.models import (
    FiatAccountInput,
    OffRampTransaction,
    OnRampTransaction,
    Quote,
)


class Direction(str, Enum):
    ONRAMP = "onramp"    # Fiat -> ledger asset
    OFFRAMP = "offramp"  # Ledger asset -> fiat


class FlowStep(str, Enum):
    """UI-visible step of a ramp flow."""

    AMOUNT_ENTRY = "amount-entry"
    BANK_SELECTION = "bank-selection"
    QUOTE = "quote"
    WALLET_REGISTRATION = "wallet-registration"
    PAYMENT_OR_SIGNING = "payment-or-signing"
    POLLING = "polling"
    COMPLETE = "complete"


class OffRampPhase(str, Enum):
    """Settlement phase of an off-ramp once it has been created."""

    CREATED = "created"
    AWAITING_SIGNABLE = "awaiting_signable"
    SIGNING = "signing"
    SUBMITTED = "submitted"
    PAYOUT_SUBMISSION = "payout_submission"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


class FlowError(Exception):
    """A flow operation was rejected or could not complete."""

    def __init__(self, message: str, code: str = "FLOW_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class TerminalStatusError(FlowError):
    """The transaction reached a terminal status before the awaited event."""

    def __init__(self, transaction_id: str, status: str):
        super().__init__(
            f"Transaction {transaction_id} ended with status {status}",
            "TERMINAL_STATUS",
        )
        self.transaction_id = transaction_id
        self.status = status


Transaction = Union[OnRampTransaction, OffRampTransaction]


def steps_for(direction: Direction, capabilities: AnchorCapabilities) -> list[FlowStep]:
    """Ordered UI steps for a direction under a provider's capabilities.

    Bank selection precedes the quote for off-ramps when the provider needs
    the bank account to price. Wallet registration follows the quote, except
    when the quote itself is keyed by the wallet (composite quote ids on
    on-ramp), in which case it moves ahead of the quote.
    """
    steps = [FlowStep.AMOUNT_ENTRY]

    if direction == Direction.OFFRAMP and capabilities.requires_bank_before_quote:
        steps.append(FlowStep.BANK_SELECTION)

    needs_wallet = (
        direction == Direction.ONRAMP and capabilities.requires_blockchain_wallet_registration
    )
    wallet_keys_quote = needs_wallet and capabilities.composite_quote_customer_id

    if wallet_keys_quote:
        steps.append(FlowStep.WALLET_REGISTRATION)
    steps.append(FlowStep.QUOTE)
    if needs_wallet and not wallet_keys_quote:
        steps.append(FlowStep.WALLET_REGISTRATION)

    steps.extend([FlowStep.PAYMENT_OR_SIGNING, FlowStep.POLLING, FlowStep.COMPLETE])
    return steps


@dataclass
class FlowState:
    """Mutable state of one ramp flow."""

    direction: Direction
    steps: list[FlowStep]
    customer_id: str
    stellar_address: str
    from_currency: str
    to_currency: str
    step: FlowStep = FlowStep.AMOUNT_ENTRY
    amount: Optional[str] = None
    bank_account_id: Optional[str] = None
    bank_account_info: Optional[FiatAccountInput] = None
    wallet_id: Optional[str] = None
    quote: Optional[Quote] = None
    transaction: Optional[Transaction] = None
    offramp_phase: Optional[OffRampPhase] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    history: list[FlowStep] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.step == FlowStep.COMPLETE
