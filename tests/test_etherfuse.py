"""Tests for the Etherfuse client."""

import httpx
import pytest

from rampkit.anchors.base import AnchorError
from rampkit.anchors.etherfuse import EtherfuseClient, EtherfuseConfig
from rampkit.anchors.models import (
    CreateCustomerInput,
    CreateOffRampInput,
    CreateOnRampInput,
    GetQuoteInput,
    KycStatus,
    TransactionStatus,
)

CUSTOMER_ID = "0f8e6c1a-2b3d-4e5f-8a9b-0c1d2e3f4a5b"
PUBLIC_KEY = "GBUSERPUBLICKEY"
CETES = "CETES:GCRYUGD5NVARGXT56XEZI5CIFCQETYHAPQQTHO2O3IQZTHDH4LATMYWC"
MXN = "MXN:GMXNISSUER"


@pytest.fixture
def client(http_client):
    return EtherfuseClient(
        EtherfuseConfig(api_key="ef_test_key", base_url="https://etherfuse.test"),
        http_client=http_client,
    )


def _order(**overrides):
    order = {
        "orderId": "ord_1",
        "customerId": CUSTOMER_ID,
        "status": "created",
        "amountInFiat": "1000.00",
        "amountInTokens": "85.50",
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-01-01T00:00:00Z",
    }
    order.update(overrides)
    return order


class TestEtherfuseCustomers:
    """Customer onboarding."""

    @pytest.mark.asyncio
    async def test_create_customer_generates_ids(self, client, mock_api):
        """Test customer and bank account ids are generated partner-side."""
        mock_api.add("POST", "/ramp/onboarding-url", (200, {"presigned_url": "https://kyc"}))

        customer = await client.create_customer(
            CreateCustomerInput(email="a@b.com", public_key=PUBLIC_KEY)
        )

        body = mock_api.last_json("POST", "/ramp/onboarding-url")
        assert body["customerId"] == customer.id
        assert body["bankAccountId"] == customer.bank_account_id
        assert body["publicKey"] == PUBLIC_KEY
        assert body["blockchain"] == "stellar"
        assert mock_api.requests[0].headers["Authorization"] == "ef_test_key"

    @pytest.mark.asyncio
    async def test_create_customer_requires_public_key(self, client):
        """Test a missing public key is rejected before any call."""
        with pytest.raises(AnchorError) as exc:
            await client.create_customer(CreateCustomerInput(email="a@b.com"))

        assert exc.value.code == "MISSING_PUBLIC_KEY"
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_create_customer_recovers_existing_org(self, client, mock_api):
        """Test a 409 naming an existing org returns that customer."""
        mock_api.add(
            "POST",
            "/ramp/onboarding-url",
            (409, {"error": f"Public key already registered, see org: {CUSTOMER_ID}"}),
        )
        mock_api.add(
            "POST",
            f"/ramp/customer/{CUSTOMER_ID}/bank-accounts",
            (200, {"items": [{"bankAccountId": "bank_9", "abbrClabe": "1234...5678"}]}),
        )

        customer = await client.create_customer(
            CreateCustomerInput(email="a@b.com", public_key=PUBLIC_KEY)
        )

        assert customer.id == CUSTOMER_ID
        assert customer.bank_account_id == "bank_9"

    @pytest.mark.asyncio
    async def test_create_customer_other_conflict_raises(self, client, mock_api):
        """Test a 409 without an org id propagates."""
        mock_api.add("POST", "/ramp/onboarding-url", (409, {"error": "duplicate email"}))

        with pytest.raises(AnchorError) as exc:
            await client.create_customer(
                CreateCustomerInput(email="a@b.com", public_key=PUBLIC_KEY)
            )

        assert exc.value.status_code == 409
        assert exc.value.message == "duplicate email"

    @pytest.mark.asyncio
    async def test_get_customer_not_found(self, client, mock_api):
        """Test a 404 maps to None."""
        assert await client.get_customer("missing") is None

    @pytest.mark.asyncio
    async def test_kyc_status_mapping(self, client, mock_api):
        """Test KYC status requires a public key and maps provider values."""
        mock_api.add(
            "GET",
            f"/ramp/customer/{CUSTOMER_ID}/kyc/{PUBLIC_KEY}",
            (200, {"status": "proposed"}),
        )

        assert await client.get_kyc_status(CUSTOMER_ID, PUBLIC_KEY) == KycStatus.PENDING
        with pytest.raises(AnchorError) as exc:
            await client.get_kyc_status(CUSTOMER_ID)
        assert exc.value.code == "MISSING_PUBLIC_KEY"

    @pytest.mark.asyncio
    async def test_kyc_url_is_fresh_presigned_url(self, client, mock_api):
        """Test the KYC URL comes from a new onboarding request for the customer."""
        mock_api.add(
            "POST",
            "/ramp/onboarding-url",
            (200, {"presigned_url": "https://devnet.etherfuse.com/onboarding?token=abc"}),
        )

        url = await client.get_kyc_url(CUSTOMER_ID, PUBLIC_KEY, "bank_1")

        body = mock_api.last_json("POST", "/ramp/onboarding-url")
        assert url == "https://devnet.etherfuse.com/onboarding?token=abc"
        assert body["customerId"] == CUSTOMER_ID
        assert body["bankAccountId"] == "bank_1"
        assert body["publicKey"] == PUBLIC_KEY

    @pytest.mark.asyncio
    async def test_kyc_url_requires_public_key(self, client, mock_api):
        """Test the onboarding URL needs the customer's public key."""
        with pytest.raises(AnchorError) as exc:
            await client.get_kyc_url(CUSTOMER_ID)

        assert exc.value.code == "MISSING_PUBLIC_KEY"
        assert not mock_api.requests


class TestEtherfuseQuotes:
    """Quote requests."""

    @pytest.mark.asyncio
    async def test_quote_resolves_symbols(self, client, mock_api):
        """Test plain symbols are resolved through the asset list."""
        mock_api.add(
            "GET",
            "/ramp/assets",
            (200, {"assets": [{"symbol": "CETES", "identifier": CETES}]}),
        )
        mock_api.add(
            "POST",
            "/ramp/quote",
            (
                200,
                {
                    "quoteId": "q_1",
                    "quoteAssets": {"sourceAsset": "MXN", "targetAsset": CETES},
                    "sourceAmount": "1000",
                    "destinationAmount": "86.00",
                    "destinationAmountAfterFee": "85.50",
                    "exchangeRate": "0.0855",
                    "feeAmount": "5.00",
                    "expiresAt": "2026-01-01T00:02:00Z",
                },
            ),
        )

        quote = await client.get_quote(
            GetQuoteInput(
                from_currency="MXN",
                to_currency="CETES",
                from_amount="1000",
                customer_id=CUSTOMER_ID,
                stellar_address=PUBLIC_KEY,
            )
        )

        body = mock_api.last_json("POST", "/ramp/quote")
        assert body["quoteAssets"] == {"type": "onramp", "sourceAsset": "MXN", "targetAsset": CETES}
        assert body["sourceAmount"] == "1000"
        assert quote.id == "q_1"
        assert quote.to_amount == "85.50"
        assert quote.fee == "5.00"

    @pytest.mark.asyncio
    async def test_quote_skips_lookup_for_identifiers(self, client, mock_api):
        """Test CODE:ISSUER pairs skip the asset lookup and quote as offramp."""
        mock_api.add(
            "POST",
            "/ramp/quote",
            (
                200,
                {
                    "quoteId": "q_2",
                    "sourceAmount": "10",
                    "destinationAmount": "115.00",
                    "exchangeRate": "11.5",
                    "expiresAt": "2026-01-01T00:02:00Z",
                },
            ),
        )

        quote = await client.get_quote(
            GetQuoteInput(from_currency=CETES, to_currency=MXN, from_amount="10")
        )

        assert not mock_api.calls("GET", "/ramp/assets")
        assert mock_api.last_json("POST", "/ramp/quote")["quoteAssets"]["type"] == "offramp"
        assert quote.to_amount == "115.00"
        assert quote.fee == "0"

    @pytest.mark.asyncio
    async def test_quote_by_receive_amount_rejected(self, client, mock_api):
        """Test a destination amount is refused instead of quoted as a source amount."""
        with pytest.raises(AnchorError) as exc:
            await client.get_quote(
                GetQuoteInput(
                    from_currency="MXN",
                    to_currency="CETES",
                    to_amount="85.50",
                    customer_id=CUSTOMER_ID,
                    stellar_address=PUBLIC_KEY,
                )
            )

        assert exc.value.code == "UNSUPPORTED_AMOUNT_SIDE"
        assert exc.value.status_code == 400
        assert not mock_api.requests


class TestEtherfuseOrders:
    """On-ramp and off-ramp orders."""

    @pytest.mark.asyncio
    async def test_create_onramp_payment_instructions(self, client, mock_api):
        """Test the deposit CLABE becomes SPEI payment instructions."""
        mock_api.add(
            "POST",
            "/ramp/order",
            (200, {"onramp": {"orderId": "ord_1", "depositClabe": "646180157000000004"}}),
        )

        tx = await client.create_onramp(
            CreateOnRampInput(
                customer_id=CUSTOMER_ID,
                quote_id="q_1",
                stellar_address=PUBLIC_KEY,
                from_currency="MXN",
                to_currency="CETES",
                amount="1000",
                bank_account_id="bank_1",
            )
        )

        assert tx.id == "ord_1"
        assert tx.status == TransactionStatus.PENDING
        assert tx.payment_instructions.clabe == "646180157000000004"
        # No deposit reference given: fall back to the order id
        assert tx.payment_instructions.reference == "ord_1"
        assert tx.payment_instructions.amount == "1000"
        assert mock_api.last_json("POST", "/ramp/order")["bankAccountId"] == "bank_1"

    @pytest.mark.asyncio
    async def test_create_offramp_has_no_signable(self, client, mock_api):
        """Test the burn transaction is never in the creation response."""
        mock_api.add("POST", "/ramp/order", (200, {"offramp": {"orderId": "ord_2"}}))

        tx = await client.create_offramp(
            CreateOffRampInput(
                customer_id=CUSTOMER_ID,
                quote_id="q_2",
                stellar_address=PUBLIC_KEY,
                from_currency="CETES",
                to_currency="MXN",
                amount="10",
                fiat_account_id="bank_1",
            )
        )

        assert tx.id == "ord_2"
        assert tx.signable_transaction is None
        assert tx.bank_account.id == "bank_1"

    @pytest.mark.asyncio
    async def test_offramp_becomes_signable_on_lookup(self, client, mock_api):
        """Test later lookups expose the burn transaction."""
        mock_api.add(
            "GET",
            "/ramp/order/ord_2",
            (200, _order(orderId="ord_2")),
            (200, _order(orderId="ord_2", status="funded", burnTransaction="AAAA_burn")),
        )

        first = await client.get_offramp_transaction("ord_2")
        second = await client.get_offramp_transaction("ord_2")

        assert first.signable_transaction is None
        assert second.signable_transaction == "AAAA_burn"
        assert second.status == TransactionStatus.PROCESSING
        assert second.from_amount == "85.50"

    @pytest.mark.asyncio
    async def test_order_status_mapping(self, client, mock_api):
        """Test provider order statuses map to normalized ones."""
        mock_api.add(
            "GET",
            "/ramp/order/ord_1",
            (200, _order(status="completed")),
            (200, _order(status="refunded")),
            (200, _order(status="canceled")),
        )

        statuses = [(await client.get_onramp_transaction("ord_1")).status for _ in range(3)]

        assert statuses == [
            TransactionStatus.COMPLETED,
            TransactionStatus.REFUNDED,
            TransactionStatus.CANCELLED,
        ]

    @pytest.mark.asyncio
    async def test_missing_order_is_none(self, client, mock_api):
        """Test unknown orders return None."""
        assert await client.get_onramp_transaction("nope") is None
        assert await client.get_offramp_transaction("nope") is None


class TestEtherfuseSandbox:
    """Sandbox helpers."""

    @pytest.mark.asyncio
    async def test_simulate_fiat_received_returns_status(self, client, mock_api):
        """Test the raw HTTP status is returned."""
        mock_api.add("POST", "/ramp/order/fiat_received", (400, {"error": "bad order"}))

        status = await client.extensions.sandbox.simulate_fiat_received("ord_1")

        assert status == 400
        assert mock_api.last_json("POST", "/ramp/order/fiat_received") == {"orderId": "ord_1"}

    @pytest.mark.asyncio
    async def test_network_error_is_anchor_error(self, settings):
        """Test transport failures surface as NETWORK_ERROR."""
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
            client = EtherfuseClient(EtherfuseConfig(api_key="k"), http_client=http)
            with pytest.raises(AnchorError) as exc:
                await client.get_customer("c")

        assert exc.value.code == "NETWORK_ERROR"
        assert exc.value.status_code == 502


class TestEtherfuseProgrammaticKyc:
    """Identity, documents and agreements without the onboarding iframe."""

    @pytest.mark.asyncio
    async def test_extension_slot(self, client):
        """Test Etherfuse exposes programmatic KYC but no hosted form."""
        assert client.extensions.programmatic_kyc is not None
        assert client.extensions.kyc_form is None

    @pytest.mark.asyncio
    async def test_submit_identity(self, client, mock_api):
        """Test identity fields are posted for the customer's wallet."""
        path = f"/ramp/customer/{CUSTOMER_ID}/kyc/{PUBLIC_KEY}/identity"
        mock_api.add("POST", path, (200, {"status": "proposed"}))
        identity = {"firstName": "Ana", "lastName": "Lopez", "country": "MX"}

        result = await client.extensions.programmatic_kyc.submit_kyc_identity(
            CUSTOMER_ID, PUBLIC_KEY, identity
        )

        assert mock_api.last_json("POST", path) == identity
        assert result == {"status": "proposed"}

    @pytest.mark.asyncio
    async def test_submit_documents(self, client, mock_api):
        """Test documents are wrapped in a documents list."""
        path = f"/ramp/customer/{CUSTOMER_ID}/kyc/{PUBLIC_KEY}/documents"
        mock_api.add("POST", path, (200, {"received": 1}))
        document = {
            "documentType": "selfie",
            "documentData": "aGVsbG8=",
            "contentType": "image/jpeg",
        }

        await client.extensions.programmatic_kyc.submit_kyc_documents(
            CUSTOMER_ID, PUBLIC_KEY, [document]
        )

        assert mock_api.last_json("POST", path) == {"documents": [document]}

    @pytest.mark.asyncio
    async def test_accept_agreements_through_presigned_url(self, client, mock_api):
        """Test agreements are accepted at a freshly issued onboarding URL."""
        mock_api.add(
            "POST",
            "/ramp/onboarding-url",
            (200, {"presigned_url": "https://etherfuse.test/onboarding/session_1"}),
        )
        mock_api.add("POST", "/onboarding/session_1", (200, {"accepted": True}))

        result = await client.extensions.programmatic_kyc.accept_agreements(
            CUSTOMER_ID, PUBLIC_KEY, "bank_1"
        )

        assert result == {"accepted": True}
        assert mock_api.last_json("POST", "/onboarding/session_1") == {"acceptAll": True}
        assert mock_api.calls("POST", "/onboarding/session_1")[0].headers["Authorization"] == "ef_test_key"

    @pytest.mark.asyncio
    async def test_agreement_failure_code(self, client, mock_api):
        """Test a rejected acceptance is reported as AGREEMENT_ERROR."""
        mock_api.add(
            "POST",
            "/ramp/onboarding-url",
            (200, {"presigned_url": "https://etherfuse.test/onboarding/session_2"}),
        )
        mock_api.add("POST", "/onboarding/session_2", (410, {"error": "session expired"}))

        with pytest.raises(AnchorError) as exc:
            await client.extensions.programmatic_kyc.accept_agreements(CUSTOMER_ID, PUBLIC_KEY)

        assert exc.value.code == "AGREEMENT_ERROR"
        assert exc.value.status_code == 410
        assert exc.value.message == "session expired"


class TestEtherfuseOnRampJourney:
    """A customer from registration to SPEI payment instructions."""

    @pytest.mark.asyncio
    async def test_register_verify_quote_and_order(self, client, mock_api):
        """Test onboarding, a 1000 MXN quote and the resulting CETES order."""
        mock_api.add(
            "POST",
            "/ramp/onboarding-url",
            (200, {"presigned_url": "https://devnet.etherfuse.com/onboarding?token=first"}),
            (200, {"presigned_url": "https://devnet.etherfuse.com/onboarding?token=second"}),
        )
        mock_api.add(
            "GET",
            "/ramp/assets",
            (200, {"assets": [{"symbol": "CETES", "identifier": CETES}]}),
        )
        mock_api.add(
            "POST",
            "/ramp/quote",
            (
                200,
                {
                    "quoteId": "q_journey",
                    "quoteAssets": {"sourceAsset": "MXN", "targetAsset": CETES},
                    "sourceAmount": "1000",
                    "destinationAmount": "86.00",
                    "destinationAmountAfterFee": "85.50",
                    "exchangeRate": "0.0855",
                    "feeAmount": "5.00",
                    "expiresAt": "2026-01-01T00:02:00Z",
                },
            ),
        )
        mock_api.add(
            "POST",
            "/ramp/order",
            (
                200,
                {
                    "onramp": {
                        "orderId": "ord_journey",
                        "depositClabe": "646180157000000004",
                        "depositReference": "REF123456",
                        "depositAmount": "1000.00",
                    }
                },
            ),
        )

        customer = await client.create_customer(
            CreateCustomerInput(email="ana@example.com", public_key=PUBLIC_KEY)
        )
        kyc_url = await client.get_kyc_url(customer.id, PUBLIC_KEY, customer.bank_account_id)
        quote = await client.get_quote(
            GetQuoteInput(
                from_currency="MXN",
                to_currency="CETES",
                from_amount="1000",
                customer_id=customer.id,
                stellar_address=PUBLIC_KEY,
            )
        )
        tx = await client.create_onramp(
            CreateOnRampInput(
                customer_id=customer.id,
                quote_id=quote.id,
                stellar_address=PUBLIC_KEY,
                from_currency="MXN",
                to_currency="CETES",
                amount=quote.from_amount,
                bank_account_id=customer.bank_account_id,
            )
        )

        assert kyc_url.endswith("token=second")
        assert mock_api.last_json("POST", "/ramp/quote")["customerId"] == customer.id
        assert quote.from_amount == "1000"
        order = mock_api.last_json("POST", "/ramp/order")
        assert order["quoteId"] == "q_journey"
        assert order["bankAccountId"] == customer.bank_account_id
        assert tx.id == "ord_journey"
        assert tx.payment_instructions.clabe
        assert tx.payment_instructions.reference == "REF123456"
        assert tx.payment_instructions.amount == "1000.00"
        assert tx.payment_instructions.currency == "MXN"
