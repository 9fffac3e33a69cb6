"""End-to-end tests for the ramp flow controller."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from rampkit.anchors.base import AnchorError
from rampkit.anchors.models import (
    BlockchainWallet,
    FiatAccountInput,
    OffRampTransaction,
    OnRampTransaction,
    TransactionStatus,
)
from rampkit.flow.controller import RampFlowController
from rampkit.flow.signing import TransactionSigner
from rampkit.flow.states import Direction, FlowError, FlowStep, OffRampPhase

USER = "GUSERADDRESS"
BANK = FiatAccountInput(bank_name="STP", clabe="646180157000000004", beneficiary="Ana Lopez")


class FailingSigner(TransactionSigner):
    async def sign(self, xdr, network_passphrase):
        raise RuntimeError("user rejected signature")


def make_controller(factory, anchor, **kwargs):
    factory.register(anchor.name, anchor)
    kwargs.setdefault("poll_interval", 0)
    return RampFlowController(factory, anchor.name, **kwargs)


def onramp(controller, currency="CETES"):
    return controller.begin(Direction.ONRAMP, "cust_1", USER, "MXN", currency)


def offramp(controller, currency="CETES"):
    return controller.begin(Direction.OFFRAMP, "cust_1", USER, currency, "MXN")


class TestOnRampFlow:
    """On-ramp flows."""

    @pytest.mark.asyncio
    async def test_onramp_to_completion(self, factory, make_anchor):
        """Test amount, quote, on-ramp and polling through to completion."""
        anchor = make_anchor("etherfuse", polls_to_terminal=3)
        controller = make_controller(factory, anchor)
        state = onramp(controller)

        assert controller.set_amount("1000") == FlowStep.QUOTE
        quote = await controller.request_quote()
        transaction = await controller.start_onramp()

        assert state.step == FlowStep.PAYMENT_OR_SIGNING
        assert transaction.payment_instructions.clabe == "646180157000000004"
        assert anchor.quote_inputs[0].customer_id == "cust_1"

        final = await controller.poll_until_terminal()

        assert final.status == TransactionStatus.COMPLETED
        assert anchor.called("get_onramp_transaction") == 3
        assert state.step == FlowStep.COMPLETE
        assert state.is_complete
        assert state.error is None
        assert quote.id == "quote_1"
        assert controller.tracker.history("onramp_1") == [
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_onramp_failed_status_sets_error(self, factory, make_anchor):
        """Test a non-completed terminal status is reported on the state."""
        anchor = make_anchor("etherfuse", final_status=TransactionStatus.EXPIRED)
        controller = make_controller(factory, anchor)
        state = onramp(controller)
        controller.set_amount("500")
        await controller.request_quote()
        await controller.start_onramp()

        final = await controller.poll_until_terminal()

        assert final.status == TransactionStatus.EXPIRED
        assert state.step == FlowStep.COMPLETE
        assert state.error_code == "EXPIRED"

    @pytest.mark.asyncio
    async def test_wallet_registration_keys_the_quote(self, factory, make_anchor):
        """Test a wallet-keyed provider registers the wallet before quoting."""
        anchor = make_anchor("blindpay")
        controller = make_controller(factory, anchor)
        state = onramp(controller, "USDB")

        assert controller.set_amount("100") == FlowStep.WALLET_REGISTRATION
        with pytest.raises(FlowError) as exc:
            await controller.request_quote()
        assert exc.value.code == "WALLET_REQUIRED"

        wallet = await controller.register_wallet()
        assert state.step == FlowStep.QUOTE

        await controller.request_quote()
        await controller.start_onramp()

        assert anchor.quote_inputs[-1].customer_id == f"cust_1:{wallet.id}"
        assert state.wallet_id == wallet.id

    @pytest.mark.asyncio
    async def test_wallet_registration_reuses_existing(self, factory, make_anchor):
        """Test an already registered address is reused."""
        anchor = make_anchor("blindpay")
        anchor.wallets.wallets.append(BlockchainWallet(id="bw_existing", address=USER))
        controller = make_controller(factory, anchor)
        onramp(controller, "USDB")
        controller.set_amount("100")

        wallet = await controller.register_wallet()

        assert wallet.id == "bw_existing"
        assert anchor.called("register_blockchain_wallet") == 0

    @pytest.mark.asyncio
    async def test_quote_expiry_requests_new_quote(self, factory, make_anchor):
        """Test an expired quote is replaced before the on-ramp is created."""
        now = [datetime.now(timezone.utc)]
        anchor = make_anchor("etherfuse", quote_ttl_minutes=2)
        controller = make_controller(factory, anchor, clock=lambda: now[0])
        state = onramp(controller)
        controller.set_amount("1000")
        first = await controller.request_quote()

        now[0] += timedelta(minutes=3)
        await controller.start_onramp()

        assert anchor.called("get_quote") == 2
        assert state.quote.id != first.id
        assert anchor.calls[-1] == ("create_onramp", state.quote.id)
        assert state.step == FlowStep.PAYMENT_OR_SIGNING

    @pytest.mark.asyncio
    async def test_fresh_quote_is_kept(self, factory, make_anchor):
        """Test a live quote is not re-requested."""
        anchor = make_anchor("etherfuse")
        controller = make_controller(factory, anchor)
        onramp(controller)
        controller.set_amount("1000")
        quote = await controller.request_quote()

        assert await controller.ensure_fresh_quote() is quote
        assert anchor.called("get_quote") == 1

    @pytest.mark.asyncio
    async def test_teardown_stops_polling(self, factory, make_anchor):
        """Test teardown ends polling and returns the last known transaction."""
        anchor = make_anchor("etherfuse", polls_to_terminal=1000)
        controller = make_controller(factory, anchor, poll_interval=10)
        onramp(controller)
        controller.set_amount("1000")
        await controller.request_quote()
        await controller.start_onramp()

        task = asyncio.create_task(controller.poll_until_terminal())
        await asyncio.sleep(0.05)
        controller.teardown()
        last = await task

        assert isinstance(last, OnRampTransaction)
        assert last.status == TransactionStatus.PROCESSING
        assert anchor.called("get_onramp_transaction") == 1


class TestOffRampFlow:
    """Off-ramp flows for each settlement path."""

    @pytest.mark.asyncio
    async def test_payout_submission_without_signer(self, factory, make_anchor):
        """Test a bank-first provider off-ramps through payout submission alone."""
        anchor = make_anchor("blindpay")
        controller = make_controller(factory, anchor)
        state = offramp(controller, "USDB")

        assert controller.set_amount("10") == FlowStep.BANK_SELECTION
        with pytest.raises(FlowError) as exc:
            await controller.request_quote()
        assert exc.value.code == "BANK_ACCOUNT_REQUIRED"
        assert anchor.called("get_quote") == 0

        bank_id = await controller.register_bank_account(BANK)
        assert state.step == FlowStep.QUOTE

        await controller.request_quote()
        created = await controller.start_offramp()
        assert anchor.quote_inputs[-1].customer_id == f"cust_1:{bank_id}"
        assert created.signable_transaction == "AAAA_authorized_payout"
        assert state.offramp_phase == OffRampPhase.CREATED

        submitted = await controller.settle_offramp()
        assert submitted.id == "po_1"
        assert state.offramp_phase == OffRampPhase.POLLING
        assert state.step == FlowStep.POLLING

        final = await controller.poll_until_terminal()

        assert final.status == TransactionStatus.COMPLETED
        assert state.offramp_phase == OffRampPhase.COMPLETED
        assert anchor.calls[-1] == ("get_offramp_transaction", "po_1")

    @pytest.mark.asyncio
    async def test_deferred_signable_after_polls(self, factory, make_anchor, make_submitter, signer):
        """Test the envelope is polled for, signed, submitted and settled."""
        anchor = make_anchor("etherfuse", signable_after=3)
        submitter = make_submitter(on_submit=lambda: setattr(anchor, "settling", True))
        controller = make_controller(
            factory, anchor, signer=signer, submitter=submitter, network_passphrase="TESTNET"
        )
        state = offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1", BANK)
        await controller.request_quote()
        created = await controller.start_offramp()
        assert created.signable_transaction is None

        await controller.settle_offramp()

        assert anchor.called("get_offramp_transaction") == 4
        assert signer.signed == [("AAAA_burn", "TESTNET")]
        assert submitter.submitted == ["signed:AAAA_burn"]
        assert state.transaction.stellar_tx_hash == "ledger_hash_1"
        assert state.offramp_phase == OffRampPhase.POLLING

        final = await controller.poll_until_terminal()

        assert final.status == TransactionStatus.COMPLETED
        assert state.offramp_phase == OffRampPhase.COMPLETED
        assert state.step == FlowStep.COMPLETE

    @pytest.mark.asyncio
    async def test_deferred_terminal_before_signable(self, factory, make_anchor, make_submitter, signer):
        """Test an off-ramp that ends before it is signable fails without signing."""
        anchor = make_anchor(
            "etherfuse", signable_after=100, polls_to_terminal=2,
            final_status=TransactionStatus.CANCELLED,
        )
        anchor.settling = True
        controller = make_controller(
            factory, anchor, signer=signer, submitter=make_submitter()
        )
        state = offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1")
        await controller.request_quote()
        await controller.start_offramp()

        result = await controller.settle_offramp()

        assert result.status == TransactionStatus.CANCELLED
        assert state.offramp_phase == OffRampPhase.FAILED
        assert state.step == FlowStep.COMPLETE
        assert state.error_code == "TERMINAL_STATUS"
        assert signer.signed == []

    @pytest.mark.asyncio
    async def test_signable_timeout_reverts(self, factory, make_anchor, make_submitter, signer):
        """Test running out of signable polls reverts to the signing step."""
        anchor = make_anchor("etherfuse", signable_after=100)
        controller = make_controller(
            factory, anchor, signer=signer, submitter=make_submitter(), max_signable_polls=3
        )
        state = offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1")
        await controller.request_quote()
        await controller.start_offramp()

        with pytest.raises(FlowError) as exc:
            await controller.settle_offramp()

        assert exc.value.code == "SIGNABLE_TIMEOUT"
        assert state.offramp_phase == OffRampPhase.CREATED
        assert state.step == FlowStep.PAYMENT_OR_SIGNING
        assert state.error_code == "SIGNABLE_TIMEOUT"

    @pytest.mark.asyncio
    async def test_teardown_while_waiting_for_signable(
        self, factory, make_anchor, make_submitter, signer
    ):
        """Test teardown during the envelope wait returns quietly and reverts the phase."""
        anchor = make_anchor("etherfuse", signable_after=1000)
        controller = make_controller(
            factory, anchor, signer=signer, submitter=make_submitter(), poll_interval=10
        )
        state = offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1")
        await controller.request_quote()
        await controller.start_offramp()

        task = asyncio.create_task(controller.settle_offramp())
        await asyncio.sleep(0.05)
        assert state.offramp_phase == OffRampPhase.AWAITING_SIGNABLE
        controller.teardown()
        last = await task

        assert not task.cancelled()
        assert isinstance(last, OffRampTransaction)
        assert last.signable_transaction is None
        assert state.offramp_phase == OffRampPhase.CREATED
        assert signer.signed == []
        assert anchor.called("get_offramp_transaction") == 1

    @pytest.mark.asyncio
    async def test_payment_to_deposit_address(
        self, factory, make_anchor, signer, payment_builder, make_submitter
    ):
        """Test providers without an envelope get a built payment to the deposit address."""
        anchor = make_anchor("alfredpay")
        submitter = make_submitter()
        controller = make_controller(
            factory, anchor, signer=signer, submitter=submitter, payment_builder=payment_builder
        )
        state = offramp(controller, "USDC")
        controller.set_amount("50")
        await controller.register_bank_account(BANK)
        await controller.request_quote()
        await controller.start_offramp()

        await controller.settle_offramp()

        request = payment_builder.requests[0]
        assert request.source == USER
        assert request.destination == "GDEPOSITADDRESS"
        assert request.memo == "memo-123"
        assert request.amount == "50"
        assert request.asset == "USDC"
        assert submitter.submitted == ["signed:AAAA_payment"]
        assert state.offramp_phase == OffRampPhase.POLLING

    @pytest.mark.asyncio
    async def test_payment_builder_required(self, factory, make_anchor, make_submitter, signer):
        """Test the deposit-address path needs a payment builder."""
        anchor = make_anchor("alfredpay")
        controller = make_controller(factory, anchor, signer=signer, submitter=make_submitter())
        offramp(controller, "USDC")
        controller.set_amount("50")
        controller.select_bank_account("fa_1")
        await controller.request_quote()
        await controller.start_offramp()

        with pytest.raises(FlowError) as exc:
            await controller.settle_offramp()

        assert exc.value.code == "PAYMENT_BUILDER_REQUIRED"

    @pytest.mark.asyncio
    async def test_offramp_requires_bank_account(self, factory, make_anchor):
        """Test off-ramps cannot be created without a bank account."""
        anchor = make_anchor("etherfuse")
        controller = make_controller(factory, anchor)
        offramp(controller)
        controller.set_amount("10")
        await controller.request_quote()

        with pytest.raises(FlowError) as exc:
            await controller.start_offramp()

        assert exc.value.code == "BANK_ACCOUNT_REQUIRED"
        assert anchor.called("create_offramp") == 0


class TestFlowErrors:
    """Error handling and step reverts."""

    @pytest.mark.asyncio
    async def test_create_failure_reverts_to_quote(self, factory, make_anchor):
        """Test a failed on-ramp creation returns to the quote step and can retry."""
        anchor = make_anchor("etherfuse")
        anchor.fail_on["create_onramp"] = AnchorError("Upstream unavailable", "UPSTREAM", 502)
        controller = make_controller(factory, anchor)
        state = onramp(controller)
        controller.set_amount("1000")
        await controller.request_quote()

        with pytest.raises(AnchorError):
            await controller.start_onramp()

        assert state.step == FlowStep.QUOTE
        assert state.error == "Upstream unavailable"
        assert state.error_code == "UPSTREAM"

        await controller.start_onramp()

        assert state.step == FlowStep.PAYMENT_OR_SIGNING
        assert state.error is None

    @pytest.mark.asyncio
    async def test_quote_failure_reverts_to_previous_step(self, factory, make_anchor):
        """Test a failed quote returns to the step before the quote."""
        anchor = make_anchor("etherfuse")
        anchor.fail_on["get_quote"] = AnchorError("Rate unavailable", "NO_RATE", 503)
        controller = make_controller(factory, anchor)
        state = onramp(controller)
        controller.set_amount("1000")

        with pytest.raises(AnchorError):
            await controller.request_quote()

        assert state.step == FlowStep.AMOUNT_ENTRY
        assert state.quote is None
        controller.dismiss_error()
        assert state.error is None

    @pytest.mark.asyncio
    async def test_signing_failure_reverts(self, factory, make_anchor, make_submitter):
        """Test a rejected signature returns to the signing step with phase created."""
        anchor = make_anchor("etherfuse")
        submitter = make_submitter()
        controller = make_controller(
            factory, anchor, signer=FailingSigner(), submitter=submitter
        )
        state = offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1")
        await controller.request_quote()
        await controller.start_offramp()

        with pytest.raises(RuntimeError):
            await controller.settle_offramp()

        assert state.offramp_phase == OffRampPhase.CREATED
        assert state.step == FlowStep.PAYMENT_OR_SIGNING
        assert state.error == "user rejected signature"
        assert submitter.submitted == []

    @pytest.mark.asyncio
    async def test_signer_required(self, factory, make_anchor):
        """Test signing without a signer is rejected."""
        anchor = make_anchor("etherfuse")
        controller = make_controller(factory, anchor)
        offramp(controller)
        controller.set_amount("10")
        controller.select_bank_account("bank_1")
        await controller.request_quote()
        await controller.start_offramp()

        with pytest.raises(FlowError) as exc:
            await controller.sign_and_submit("AAAA")

        assert exc.value.code == "SIGNER_REQUIRED"

    @pytest.mark.asyncio
    async def test_invalid_amounts(self, factory, make_anchor):
        """Test invalid amounts are rejected without moving on."""
        controller = make_controller(factory, make_anchor("etherfuse"))
        state = onramp(controller)

        for amount in ("0", "-5", "abc"):
            with pytest.raises(FlowError) as exc:
                controller.set_amount(amount)
            assert exc.value.code == "INVALID_AMOUNT"

        assert state.step == FlowStep.AMOUNT_ENTRY

    @pytest.mark.asyncio
    async def test_amount_change_drops_quote(self, factory, make_anchor):
        """Test changing the amount invalidates the quote."""
        controller = make_controller(factory, make_anchor("etherfuse"))
        state = onramp(controller)
        controller.set_amount("1000")
        await controller.request_quote()

        controller.set_amount("2000")

        assert state.quote is None
        with pytest.raises(FlowError) as exc:
            await controller.ensure_fresh_quote()
        assert exc.value.code == "QUOTE_REQUIRED"

    @pytest.mark.asyncio
    async def test_wrong_direction(self, factory, make_anchor):
        """Test on-ramp calls are rejected on an off-ramp flow."""
        controller = make_controller(factory, make_anchor("etherfuse"))
        offramp(controller)
        controller.set_amount("10")
        await controller.request_quote()

        with pytest.raises(FlowError) as exc:
            await controller.start_onramp()

        assert exc.value.code == "WRONG_DIRECTION"

    def test_state_before_begin(self, factory, make_anchor):
        """Test the state is unavailable before a flow starts."""
        controller = make_controller(factory, make_anchor("etherfuse"))

        with pytest.raises(FlowError) as exc:
            controller.state

        assert exc.value.code == "NOT_STARTED"

    @pytest.mark.asyncio
    async def test_payout_extension_required(self, factory, make_anchor):
        """Test payout submission needs the provider extension."""
        controller = make_controller(factory, make_anchor("etherfuse"))
        state = offramp(controller)
        state.transaction = OffRampTransaction(id="offramp_1")

        with pytest.raises(FlowError) as exc:
            await controller.submit_payout()

        assert exc.value.code == "NOT_SUPPORTED"
