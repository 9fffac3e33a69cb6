"""Quote and transaction flow control."""

from rampkit.flow.controller import RampFlowController
from rampkit.flow.polling import StatusTracker, TransactionPoller
from rampkit.flow.signing import (
    LedgerSubmitter,
    PaymentBuilder,
    PaymentRequest,
    TransactionSigner,
)
from rampkit.flow.states import (
    Direction,
    FlowError,
    FlowState,
    FlowStep,
    OffRampPhase,
    TerminalStatusError,
    steps_for,
)

__all__ = [
    "Direction",
    "FlowError",
    "FlowState",
    "FlowStep",
    "LedgerSubmitter",
    "OffRampPhase",
    "PaymentBuilder",
    "PaymentRequest",
    "RampFlowController",
    "StatusTracker",
    "TerminalStatusError",
    "TransactionPoller",
    "TransactionSigner",
    "steps_for",
]
