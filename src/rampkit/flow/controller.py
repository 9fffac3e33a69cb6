"""Ramp flow controller.

Drives one on-ramp or off-ramp through its steps for a single provider. The
steps and settlement path are picked from the provider's capabilities, never
from its identity.

Step failures put the flow back on the previous step with ``state.error``
set, so the user can retry from there. Quote expiry sends the flow back to
the quote step with a fresh quote.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, Optional, TypeVar

from rampkit.anchors.base import Anchor, AnchorError
from rampkit.anchors.capabilities import AnchorCapabilities, build_quote_customer_id
from rampkit.anchors.factory import AnchorFactory
from rampkit.anchors.models import (
    BlockchainWallet,
    CreateOffRampInput,
    CreateOnRampInput,
    FiatAccountInput,
    GetQuoteInput,
    OffRampTransaction,
    OnRampTransaction,
    Quote,
    RegisterFiatAccountInput,
    TransactionStatus,
)
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
    Transaction,
    steps_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NETWORK_PASSPHRASE = "Test SDF Network ; September 2015"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RampFlowController:
    """State machine for one ramp flow against one provider."""

    def __init__(
        self,
        anchor_factory: AnchorFactory,
        provider_id: str,
        signer: Optional[TransactionSigner] = None,
        submitter: Optional[LedgerSubmitter] = None,
        payment_builder: Optional[PaymentBuilder] = None,
        poll_interval: float = 5.0,
        max_signable_polls: int = 60,
        network_passphrase: str = DEFAULT_NETWORK_PASSPHRASE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.anchor: Anchor = anchor_factory.create(provider_id)
        self.provider_id = provider_id
        self.signer = signer
        self.submitter = submitter
        self.payment_builder = payment_builder
        self.poll_interval = poll_interval
        self.max_signable_polls = max_signable_polls
        self.network_passphrase = network_passphrase
        self.clock = clock
        self.tracker = StatusTracker()
        # One outstanding provider call per transaction
        self._lock = asyncio.Lock()
        self._poller: Optional[TransactionPoller] = None
        self._state: Optional[FlowState] = None

    @property
    def capabilities(self) -> AnchorCapabilities:
        return self.anchor.capabilities

    @property
    def state(self) -> FlowState:
        if self._state is None:
            raise FlowError("Flow has not been started", "NOT_STARTED")
        return self._state

    def steps_for(self, direction: Direction) -> list[FlowStep]:
        return steps_for(Direction(direction), self.capabilities)

    def begin(
        self,
        direction: Direction,
        customer_id: str,
        stellar_address: str,
        from_currency: str,
        to_currency: str,
    ) -> FlowState:
        """Start a new flow, dropping any previous one."""
        self.teardown()
        direction = Direction(direction)
        self._state = FlowState(
            direction=direction,
            steps=self.steps_for(direction),
            customer_id=customer_id,
            stellar_address=stellar_address,
            from_currency=from_currency,
            to_currency=to_currency,
        )
        logger.info(
            f"[{self.provider_id}] Started {direction.value} flow for customer {customer_id}"
        )
        return self._state

    # ======================
    # Step navigation
    # ======================

    def _next_step(self, step: FlowStep) -> FlowStep:
        steps = self.state.steps
        return steps[min(steps.index(step) + 1, len(steps) - 1)]

    def _previous_step(self, step: FlowStep) -> FlowStep:
        steps = self.state.steps
        index = steps.index(step)
        return steps[index - 1] if index > 0 else steps[0]

    def _move_to(self, step: FlowStep) -> None:
        state = self.state
        if state.step != step:
            state.history.append(state.step)
            logger.debug(f"[{self.provider_id}] {state.step.value} -> {step.value}")
            state.step = step

    def _require_step(self, *allowed: FlowStep) -> None:
        if self.state.step not in allowed:
            raise FlowError(
                f"Cannot do this at step {self.state.step.value}",
                "INVALID_STEP",
            )

    def _fail(self, error: Exception, revert_to: FlowStep) -> None:
        state = self.state
        state.error = getattr(error, "message", None) or str(error)
        state.error_code = getattr(error, "code", None) or "UNKNOWN_ERROR"
        logger.error(f"[{self.provider_id}] Step {state.step.value} failed: {state.error}")
        self._move_to(revert_to)

    async def _run_step(
        self, step: FlowStep, call: Callable[[], Awaitable[T]], revert_to: Optional[FlowStep] = None
    ) -> T:
        """Enter ``step`` and run ``call``; on failure revert and re-raise."""
        previous = self.state.step
        self.state.error = None
        self.state.error_code = None
        self._move_to(step)
        try:
            async with self._lock:
                return await call()
        except (AnchorError, FlowError) as e:
            self._fail(e, revert_to or previous)
            raise

    def dismiss_error(self) -> None:
        self.state.error = None
        self.state.error_code = None

    # ======================
    # Pre-quote steps
    # ======================

    def set_amount(self, amount: str) -> FlowStep:
        """Set the source amount and advance past amount entry."""
        self._require_step(FlowStep.AMOUNT_ENTRY, FlowStep.BANK_SELECTION, FlowStep.QUOTE)
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError) as e:
            raise FlowError(f"Invalid amount: {amount!r}", "INVALID_AMOUNT") from e
        if not value.is_finite() or value <= 0:
            raise FlowError(f"Amount must be positive: {amount!r}", "INVALID_AMOUNT")

        state = self.state
        if state.amount != amount:
            # A new amount invalidates any quote
            state.quote = None
        state.amount = amount
        if state.step == FlowStep.AMOUNT_ENTRY:
            self._move_to(self._next_step(FlowStep.AMOUNT_ENTRY))
        return state.step

    def select_bank_account(
        self, bank_account_id: str, info: Optional[FiatAccountInput] = None
    ) -> FlowStep:
        """Use an already registered bank account for the payout."""
        state = self.state
        if state.step in (FlowStep.PAYMENT_OR_SIGNING, FlowStep.POLLING, FlowStep.COMPLETE):
            raise FlowError("Bank account can no longer change", "INVALID_STEP")

        if state.bank_account_id != bank_account_id:
            state.quote = None
        state.bank_account_id = bank_account_id
        state.bank_account_info = info
        if state.step == FlowStep.BANK_SELECTION:
            self._move_to(self._next_step(FlowStep.BANK_SELECTION))
        return state.step

    async def register_bank_account(self, account: FiatAccountInput) -> str:
        """Register a new bank account with the provider and select it."""
        state = self.state
        step = state.step

        registered = await self._run_step(
            step,
            lambda: self.anchor.register_fiat_account(
                RegisterFiatAccountInput(customer_id=state.customer_id, bank_account=account)
            ),
        )
        logger.info(f"[{self.provider_id}] Registered bank account {registered.id}")
        self.select_bank_account(registered.id, account)
        return registered.id

    async def register_wallet(self, name: Optional[str] = None) -> BlockchainWallet:
        """Register the user's address with the provider, reusing a match."""
        self._require_step(FlowStep.WALLET_REGISTRATION)
        extension = self.anchor.extensions.wallet_registration
        if extension is None:
            raise FlowError(
                f"{self.provider_id} does not register wallets", "NOT_SUPPORTED"
            )

        state = self.state

        async def register() -> BlockchainWallet:
            existing = await extension.get_blockchain_wallets(state.customer_id)
            for wallet in existing:
                if wallet.address == state.stellar_address:
                    logger.info(f"[{self.provider_id}] Reusing registered wallet {wallet.id}")
                    return wallet
            return await extension.register_blockchain_wallet(
                state.customer_id, state.stellar_address, name
            )

        wallet = await self._run_step(FlowStep.WALLET_REGISTRATION, register)
        if state.wallet_id != wallet.id:
            state.quote = None
        state.wallet_id = wallet.id
        self._move_to(self._next_step(FlowStep.WALLET_REGISTRATION))
        return wallet

    # ======================
    # Quotes
    # ======================

    def _wallet_keys_quote(self) -> bool:
        steps = self.state.steps
        return (
            FlowStep.WALLET_REGISTRATION in steps
            and steps.index(FlowStep.WALLET_REGISTRATION) < steps.index(FlowStep.QUOTE)
        )

    def _quote_resource_id(self) -> Optional[str]:
        state = self.state
        if state.direction == Direction.OFFRAMP:
            return state.bank_account_id
        return state.wallet_id

    async def request_quote(self) -> Quote:
        """Request a quote for the current amount.

        Raises:
            FlowError: If a bank account or wallet the provider prices against
                has not been set yet
        """
        state = self.state
        caps = self.capabilities
        self._require_step(FlowStep.QUOTE, FlowStep.BANK_SELECTION, FlowStep.WALLET_REGISTRATION)

        if state.amount is None:
            raise FlowError("Enter an amount first", "AMOUNT_REQUIRED")
        if FlowStep.BANK_SELECTION in state.steps and not state.bank_account_id:
            raise FlowError(
                "Select or register a bank account before requesting a quote",
                "BANK_ACCOUNT_REQUIRED",
            )
        if self._wallet_keys_quote() and not state.wallet_id:
            raise FlowError(
                "Register your wallet before requesting a quote", "WALLET_REQUIRED"
            )

        customer_id = build_quote_customer_id(state.customer_id, self._quote_resource_id(), caps)
        quote_input = GetQuoteInput(
            from_currency=state.from_currency,
            to_currency=state.to_currency,
            from_amount=state.amount,
            customer_id=customer_id,
            stellar_address=state.stellar_address,
        )

        quote = await self._run_step(
            FlowStep.QUOTE,
            lambda: self.anchor.get_quote(quote_input),
            revert_to=self._previous_step(FlowStep.QUOTE),
        )
        state.quote = quote
        logger.info(
            f"[{self.provider_id}] Quote {quote.id}: {quote.from_amount} {quote.from_currency} "
            f"-> {quote.to_amount} {quote.to_currency} (expires {quote.expires_at})"
        )
        return quote

    async def ensure_fresh_quote(self) -> Quote:
        """Return the current quote, replacing it when it has expired."""
        state = self.state
        if state.quote is None:
            raise FlowError("Request a quote first", "QUOTE_REQUIRED")
        if not state.quote.is_expired(self.clock()):
            return state.quote

        logger.info(f"[{self.provider_id}] Quote {state.quote.id} expired, requesting a new one")
        state.quote = None
        self._move_to(FlowStep.QUOTE)
        return await self.request_quote()

    # ======================
    # Transactions
    # ======================

    def _require_wallet_if_needed(self) -> None:
        state = self.state
        if FlowStep.WALLET_REGISTRATION in state.steps and not state.wallet_id:
            raise FlowError("Register your wallet first", "WALLET_REQUIRED")

    async def start_onramp(self) -> OnRampTransaction:
        """Create the on-ramp from the current quote.

        The result carries the payment instructions the user follows.
        """
        state = self.state
        if state.direction != Direction.ONRAMP:
            raise FlowError("Not an on-ramp flow", "WRONG_DIRECTION")
        self._require_step(FlowStep.QUOTE, FlowStep.WALLET_REGISTRATION)
        self._require_wallet_if_needed()

        quote = await self.ensure_fresh_quote()
        onramp_input = CreateOnRampInput(
            customer_id=state.customer_id,
            quote_id=quote.id,
            stellar_address=state.stellar_address,
            from_currency=state.from_currency,
            to_currency=state.to_currency,
            amount=state.amount,
            bank_account_id=state.bank_account_id,
        )

        transaction = await self._run_step(
            FlowStep.PAYMENT_OR_SIGNING,
            lambda: self.anchor.create_onramp(onramp_input),
        )
        state.transaction = transaction
        self.tracker.observe(transaction.id, transaction.status)
        logger.info(f"[{self.provider_id}] Created on-ramp {transaction.id}")
        return transaction

    async def start_offramp(self) -> OffRampTransaction:
        """Create the off-ramp from the current quote."""
        state = self.state
        if state.direction != Direction.OFFRAMP:
            raise FlowError("Not an off-ramp flow", "WRONG_DIRECTION")
        self._require_step(FlowStep.QUOTE)
        if not state.bank_account_id:
            raise FlowError("Select a bank account first", "BANK_ACCOUNT_REQUIRED")

        quote = await self.ensure_fresh_quote()
        offramp_input = CreateOffRampInput(
            customer_id=state.customer_id,
            quote_id=quote.id,
            stellar_address=state.stellar_address,
            from_currency=state.from_currency,
            to_currency=state.to_currency,
            amount=state.amount,
            fiat_account_id=state.bank_account_id,
            bank_account_info=state.bank_account_info,
        )

        transaction = await self._run_step(
            FlowStep.PAYMENT_OR_SIGNING,
            lambda: self.anchor.create_offramp(offramp_input),
        )
        state.transaction = transaction
        state.offramp_phase = OffRampPhase.CREATED
        self.tracker.observe(transaction.id, transaction.status)
        logger.info(f"[{self.provider_id}] Created off-ramp {transaction.id}")
        return transaction

    def _offramp(self) -> OffRampTransaction:
        transaction = self.state.transaction
        if not isinstance(transaction, OffRampTransaction):
            raise FlowError("No off-ramp in progress", "NO_TRANSACTION")
        return transaction

    async def settle_offramp(self) -> OffRampTransaction:
        """Run the provider's settlement path for the created off-ramp.

        - anchor payout submission: hand the authorization back to the anchor
        - anchor-prepared envelope: sign it, after polling for it when deferred
        - otherwise: build a payment to the deposit address, sign and submit
        """
        caps = self.capabilities
        transaction = self._offramp()

        if caps.requires_anchor_payout_submission:
            return await self.submit_payout()

        if caps.requires_offramp_signing:
            if caps.deferred_offramp_signing and not transaction.signable_transaction:
                try:
                    transaction = await self.wait_for_signable()
                except TerminalStatusError:
                    return self._offramp()
                if not transaction.signable_transaction:
                    # Torn down while waiting
                    return transaction
            await self.sign_and_submit(transaction.signable_transaction)
            return self._offramp()

        if self.payment_builder is None:
            raise FlowError("A payment builder is required", "PAYMENT_BUILDER_REQUIRED")
        if not transaction.stellar_address:
            raise FlowError("The off-ramp has no deposit address", "MISSING_DEPOSIT_ADDRESS")

        state = self.state
        request = PaymentRequest(
            source=state.stellar_address,
            destination=transaction.stellar_address,
            asset=transaction.from_currency or state.from_currency,
            amount=transaction.from_amount or state.amount,
            memo=transaction.memo,
        )
        xdr = await self.payment_builder.build_payment(request)
        await self.sign_and_submit(xdr)
        return self._offramp()

    async def wait_for_signable(self) -> OffRampTransaction:
        """Poll a deferred off-ramp until its envelope is available."""
        state = self.state
        transaction = self._offramp()
        state.offramp_phase = OffRampPhase.AWAITING_SIGNABLE

        poller = self._new_poller(transaction.id, self.anchor.get_offramp_transaction)
        try:
            transaction = await poller.wait_for_signable(self.max_signable_polls)
        except asyncio.CancelledError:
            if poller.cancelled:
                logger.info(f"[{self.provider_id}] Stopped waiting for {transaction.id} envelope")
                state.offramp_phase = OffRampPhase.CREATED
                state.transaction = poller.last or transaction
                return state.transaction
            raise
        except TerminalStatusError as e:
            state.transaction = poller.last or transaction
            state.offramp_phase = OffRampPhase.FAILED
            state.error = e.message
            state.error_code = e.code
            self._move_to(FlowStep.COMPLETE)
            raise
        except FlowError as e:
            state.offramp_phase = OffRampPhase.CREATED
            self._fail(e, FlowStep.PAYMENT_OR_SIGNING)
            raise

        state.transaction = transaction
        return transaction

    async def sign_and_submit(self, xdr: Optional[str] = None) -> str:
        """Sign an envelope locally and broadcast it.

        Returns:
            Ledger transaction hash
        """
        state = self.state
        transaction = self._offramp()
        xdr = xdr or transaction.signable_transaction
        if not xdr:
            raise FlowError("Nothing to sign yet", "SIGNABLE_NOT_READY")
        if self.signer is None or self.submitter is None:
            raise FlowError("A signer and a submitter are required", "SIGNER_REQUIRED")

        state.offramp_phase = OffRampPhase.SIGNING
        try:
            signed = await self.signer.sign(xdr, self.network_passphrase)
            state.offramp_phase = OffRampPhase.SUBMITTED
            tx_hash = await self.submitter.submit(signed)
        except Exception as e:
            state.offramp_phase = OffRampPhase.CREATED
            self._fail(e, FlowStep.PAYMENT_OR_SIGNING)
            raise

        logger.info(f"[{self.provider_id}] Submitted off-ramp {transaction.id}: {tx_hash}")
        state.transaction = transaction.model_copy(update={"stellar_tx_hash": tx_hash})
        state.offramp_phase = OffRampPhase.POLLING
        self._move_to(FlowStep.POLLING)
        return tx_hash

    async def submit_payout(self) -> OffRampTransaction:
        """Hand the authorized off-ramp to the provider for settlement."""
        state = self.state
        transaction = self._offramp()
        extension = self.anchor.extensions.payout_submission
        if extension is None:
            raise FlowError(
                f"{self.provider_id} does not accept payout submissions", "NOT_SUPPORTED"
            )

        state.offramp_phase = OffRampPhase.PAYOUT_SUBMISSION
        try:
            submitted = await self._run_step(
                FlowStep.PAYMENT_OR_SIGNING,
                lambda: extension.submit_payout(transaction),
            )
        except (AnchorError, FlowError):
            state.offramp_phase = OffRampPhase.CREATED
            raise

        state.transaction = submitted
        state.offramp_phase = OffRampPhase.POLLING
        self.tracker.observe(submitted.id, submitted.status)
        self._move_to(FlowStep.POLLING)
        return submitted

    # ======================
    # Polling
    # ======================

    def _new_poller(
        self, transaction_id: str, fetch: Callable[[str], Awaitable[Optional[Transaction]]]
    ) -> TransactionPoller:
        if self._poller is not None:
            self._poller.cancel()
        self._poller = TransactionPoller(
            fetch,
            transaction_id,
            interval=self.poll_interval,
            tracker=self.tracker,
            lock=self._lock,
        )
        return self._poller

    async def poll_until_terminal(self, max_attempts: Optional[int] = None) -> Transaction:
        """Poll the current transaction until it reaches a terminal status.

        Returns the last known transaction if the flow is torn down first.
        """
        state = self.state
        transaction = state.transaction
        if transaction is None:
            raise FlowError("No transaction to poll", "NO_TRANSACTION")

        if isinstance(transaction, OffRampTransaction):
            fetch = self.anchor.get_offramp_transaction
        else:
            fetch = self.anchor.get_onramp_transaction

        poller = self._new_poller(transaction.id, fetch)
        self._move_to(FlowStep.POLLING)
        try:
            final = await poller.wait_until_terminal(max_attempts)
        except asyncio.CancelledError:
            if poller.cancelled:
                logger.info(f"[{self.provider_id}] Stopped polling {transaction.id}")
                return poller.last or transaction
            raise
        except (AnchorError, FlowError) as e:
            self._fail(e, self._previous_step(FlowStep.POLLING))
            raise

        state.transaction = final
        if isinstance(final, OffRampTransaction):
            state.offramp_phase = (
                OffRampPhase.COMPLETED
                if final.status == TransactionStatus.COMPLETED
                else OffRampPhase.FAILED
            )
        if final.status != TransactionStatus.COMPLETED:
            state.error = f"Transaction {final.status.value}"
            state.error_code = final.status.value.upper()
        self._move_to(FlowStep.COMPLETE)
        return final

    def teardown(self) -> None:
        """Cancel any running poller. Call when the owning view goes away."""
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None
