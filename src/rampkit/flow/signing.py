"""Ledger-side collaborators used by the flow controller.

Off-ramp settlement without anchor payout submission:
1. Obtain an unsigned envelope (from the anchor, or built locally)
2. Signer returns the signed envelope (keys never leave the signer)
3. Submitter broadcasts it and returns the ledger transaction hash

Implementations live in the host application (a browser wallet bridge, a
custody service, a test double).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Signs transaction envelopes for the connected account."""

    @abstractmethod
    async def sign(self, xdr: str, network_passphrase: str) -> str:
        """Sign a transaction envelope.

        Args:
            xdr: Unsigned transaction envelope (base64 XDR)
            network_passphrase: Network the transaction is bound to

        Returns:
            Signed transaction envelope (base64 XDR)
        """
        pass


class LedgerSubmitter(ABC):
    """Broadcasts signed transactions to the ledger."""

    @abstractmethod
    async def submit(self, signed_xdr: str) -> str:
        """Submit a signed envelope.

        Returns:
            Ledger transaction hash
        """
        pass


@dataclass
class PaymentRequest:
    """A direct payment the user makes to an anchor deposit address."""

    source: str
    destination: str
    asset: str
    amount: str
    memo: Optional[str] = None


class PaymentBuilder(ABC):
    """Builds unsigned payment envelopes."""

    @abstractmethod
    async def build_payment(self, request: PaymentRequest) -> str:
        """Build an unsigned payment envelope (base64 XDR)."""
        pass
