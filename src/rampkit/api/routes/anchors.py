"""Anchor proxy endpoints.

Thin wrappers over the provider clients. Provider-specific behaviour is
reached through extension slots; a provider without the extension gets a
400. AnchorError responses are produced by the app's exception handler.
"""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from rampkit.anchors.base import Anchor
from rampkit.anchors.models import (
    CreateCustomerInput,
    CreateOffRampInput,
    CreateOnRampInput,
    Customer,
    FiatAccountInput,
    GetQuoteInput,
    OffRampTransaction,
    RegisterFiatAccountInput,
)
from rampkit.api.dependencies import get_anchor, get_customer_repository, get_settings_dep
from rampkit.api.schemas import (
    BlockchainWalletRequest,
    CreateCustomerRequest,
    FiatAccountRequest,
    KycAgreementsRequest,
    KycDataRequest,
    KycDocumentsRequest,
    KycFileRequest,
    KycIdentityRequest,
    KycSubmitRequest,
    OffRampRequest,
    PayoutSubmitRequest,
    SandboxRequest,
)
from rampkit.config import Settings
from rampkit.customers.repository import CustomerRepository
from rampkit.customers.store import storage_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/anchor/{provider}")


# ======================
# Customers
# ======================


@router.post("/customers", status_code=201)
async def create_customer(body: CreateCustomerRequest, anchor: Anchor = Depends(get_anchor)):
    """Create a customer. Some providers only return a local placeholder."""
    customer = await anchor.create_customer(
        CreateCustomerInput(email=body.email, country=body.country, public_key=body.public_key)
    )
    return customer.model_dump()


@router.get("/customers")
async def find_customer(
    email: str = Query(...),
    country: str = Query("MX"),
    anchor: Anchor = Depends(get_anchor),
):
    """Look up a customer by email."""
    customer = await anchor.get_customer_by_email(email, country)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer.model_dump()


@router.get("/customers/{customer_id}")
async def get_customer(customer_id: str, anchor: Anchor = Depends(get_anchor)):
    customer = await anchor.get_customer(customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer.model_dump()


# ======================
# Quotes and transactions
# ======================


@router.post("/quotes")
async def get_quote(body: GetQuoteInput, anchor: Anchor = Depends(get_anchor)):
    quote = await anchor.get_quote(body)
    return quote.model_dump()


@router.post("/onramp", status_code=201)
async def create_onramp(body: CreateOnRampInput, anchor: Anchor = Depends(get_anchor)):
    transaction = await anchor.create_onramp(body)
    logger.info(f"[{anchor.name}] On-ramp {transaction.id} created")
    return transaction.model_dump()


@router.get("/onramp")
async def get_onramp(transaction_id: str = Query(...), anchor: Anchor = Depends(get_anchor)):
    transaction = await anchor.get_onramp_transaction(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction.model_dump()


@router.post("/offramp", status_code=201)
async def create_offramp(body: OffRampRequest, anchor: Anchor = Depends(get_anchor)):
    """Create an off-ramp, registering a new bank account first if given."""
    if not body.fiat_account_id and body.bank_account is None:
        raise HTTPException(
            status_code=400, detail="Either fiat_account_id or bank_account is required"
        )

    if body.fiat_account_id:
        fiat_account_id = body.fiat_account_id
        bank_info = body.bank_account_info
    else:
        registered = await anchor.register_fiat_account(
            RegisterFiatAccountInput(customer_id=body.customer_id, bank_account=body.bank_account)
        )
        fiat_account_id = registered.id
        bank_info = body.bank_account

    transaction = await anchor.create_offramp(
        CreateOffRampInput(
            customer_id=body.customer_id,
            quote_id=body.quote_id,
            stellar_address=body.stellar_address,
            from_currency=body.from_currency,
            to_currency=body.to_currency,
            amount=body.amount,
            fiat_account_id=fiat_account_id,
            memo=body.memo,
            bank_account_info=bank_info,
        )
    )
    logger.info(f"[{anchor.name}] Off-ramp {transaction.id} created")
    return transaction.model_dump()


@router.get("/offramp")
async def get_offramp(transaction_id: str = Query(...), anchor: Anchor = Depends(get_anchor)):
    transaction = await anchor.get_offramp_transaction(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction.model_dump()


@router.post("/fiat-accounts", status_code=201)
async def register_fiat_account(body: FiatAccountRequest, anchor: Anchor = Depends(get_anchor)):
    registered = await anchor.register_fiat_account(
        RegisterFiatAccountInput(
            customer_id=body.customer_id,
            bank_account=FiatAccountInput(
                bank_name=body.bank_name,
                account_number=body.account_number,
                clabe=body.clabe,
                beneficiary=body.beneficiary,
            ),
        )
    )
    return registered.model_dump()


@router.get("/fiat-accounts")
async def list_fiat_accounts(customer_id: str = Query(...), anchor: Anchor = Depends(get_anchor)):
    accounts = await anchor.get_fiat_accounts(customer_id)
    return [account.model_dump() for account in accounts]


# ======================
# KYC
# ======================


@router.get("/kyc")
async def get_kyc(
    type: str = Query("status"),
    customer_id: Optional[str] = Query(None),
    public_key: Optional[str] = Query(None),
    bank_account_id: Optional[str] = Query(None),
    submission_id: Optional[str] = Query(None),
    country: str = Query("MX"),
    redirect_url: Optional[str] = Query(None),
    anchor: Anchor = Depends(get_anchor),
):
    """KYC lookups selected by ``type``.

    ``status`` (default), ``url``, ``tos``, ``requirements``, ``submission``
    and ``submission-status``.
    """
    extensions = anchor.extensions

    if type == "tos":
        if extensions.terms_of_service is None:
            raise HTTPException(status_code=400, detail="Provider does not support ToS URL generation")
        return {"url": await extensions.terms_of_service.generate_tos_url(redirect_url)}

    if type == "requirements":
        if extensions.kyc_form is None:
            raise HTTPException(status_code=400, detail="Provider does not support KYC requirements")
        return await extensions.kyc_form.get_kyc_requirements(country)

    if type == "url":
        if not customer_id:
            raise HTTPException(status_code=400, detail="customer_id query parameter is required")
        return {"url": await anchor.get_kyc_url(customer_id, public_key, bank_account_id)}

    if not customer_id:
        raise HTTPException(status_code=400, detail="customer_id query parameter is required")

    if type == "submission":
        if extensions.kyc_form is None:
            raise HTTPException(status_code=400, detail="Provider does not support KYC submission lookup")
        return {"submission": await extensions.kyc_form.get_kyc_submission(customer_id)}

    if type == "submission-status":
        if extensions.kyc_form is None:
            raise HTTPException(status_code=400, detail="Provider does not support KYC submission status")
        if not submission_id:
            raise HTTPException(status_code=400, detail="submission_id query parameter is required")
        return await extensions.kyc_form.get_kyc_submission_status(customer_id, submission_id)

    status = await anchor.get_kyc_status(customer_id, public_key)
    return {"status": status.value}


@router.post("/kyc/receiver")
async def create_receiver(body: dict, anchor: Anchor = Depends(get_anchor)):
    """Create a receiver from ToS acceptance plus KYC data."""
    extension = anchor.extensions.terms_of_service
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support receiver creation")
    customer = await extension.create_receiver(body)
    return customer.model_dump()


@router.post("/kyc/data")
async def submit_kyc_data(body: KycDataRequest, anchor: Anchor = Depends(get_anchor)):
    extension = anchor.extensions.kyc_form
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support KYC submission")
    return await extension.submit_kyc_data(body.customer_id, body.kyc_data)


@router.post("/kyc/file")
async def submit_kyc_file(body: KycFileRequest, anchor: Anchor = Depends(get_anchor)):
    extension = anchor.extensions.kyc_form
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support KYC submission")
    try:
        content = base64.b64decode(body.content_base64, validate=True)
    except binascii.Error:
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64")
    return await extension.submit_kyc_file(
        body.customer_id, body.submission_id, body.file_type, content, body.filename
    )


@router.post("/kyc/submit")
async def finalize_kyc(body: KycSubmitRequest, anchor: Anchor = Depends(get_anchor)):
    extension = anchor.extensions.kyc_form
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support KYC submission")
    await extension.finalize_kyc_submission(body.customer_id, body.submission_id)
    return {"success": True, "message": "KYC submission finalized"}


def _programmatic_kyc(anchor: Anchor):
    extension = anchor.extensions.programmatic_kyc
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support programmatic KYC")
    return extension


@router.post("/kyc/identity")
async def submit_kyc_identity(body: KycIdentityRequest, anchor: Anchor = Depends(get_anchor)):
    extension = _programmatic_kyc(anchor)
    return await extension.submit_kyc_identity(body.customer_id, body.public_key, body.identity)


@router.post("/kyc/documents")
async def submit_kyc_documents(body: KycDocumentsRequest, anchor: Anchor = Depends(get_anchor)):
    extension = _programmatic_kyc(anchor)
    return await extension.submit_kyc_documents(
        body.customer_id, body.public_key, body.documents
    )


@router.post("/kyc/agreements")
async def accept_kyc_agreements(body: KycAgreementsRequest, anchor: Anchor = Depends(get_anchor)):
    """Accept the provider's legal agreements on the customer's behalf."""
    extension = _programmatic_kyc(anchor)
    await extension.accept_agreements(body.customer_id, body.public_key, body.bank_account_id)
    return {"success": True, "message": "Agreements accepted"}


# ======================
# Wallets and payouts
# ======================


@router.post("/blockchain-wallets")
async def register_blockchain_wallet(
    body: BlockchainWalletRequest, anchor: Anchor = Depends(get_anchor)
):
    extension = anchor.extensions.wallet_registration
    if extension is None:
        raise HTTPException(
            status_code=400, detail="Provider does not support blockchain wallet registration"
        )
    wallet = await extension.register_blockchain_wallet(body.receiver_id, body.address, body.name)
    return wallet.model_dump()


@router.get("/blockchain-wallets")
async def list_blockchain_wallets(
    receiver_id: str = Query(...), anchor: Anchor = Depends(get_anchor)
):
    extension = anchor.extensions.wallet_registration
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support blockchain wallets")
    wallets = await extension.get_blockchain_wallets(receiver_id)
    return [wallet.model_dump() for wallet in wallets]


@router.post("/payout-submit")
async def submit_payout(body: PayoutSubmitRequest, anchor: Anchor = Depends(get_anchor)):
    """Hand an authorized payout back to the provider."""
    extension = anchor.extensions.payout_submission
    if extension is None:
        raise HTTPException(status_code=400, detail="Provider does not support payout submission")
    transaction = await extension.submit_payout(
        OffRampTransaction(
            id=body.quote_id,
            customer_id=body.customer_id,
            quote_id=body.quote_id,
            stellar_address=body.sender_wallet_address,
            signable_transaction=body.signed_transaction,
        )
    )
    return transaction.model_dump()


# ======================
# Sandbox
# ======================


@router.post("/sandbox")
async def sandbox_action(
    body: SandboxRequest,
    anchor: Anchor = Depends(get_anchor),
    settings: Settings = Depends(get_settings_dep),
):
    """Sandbox-only simulation hooks. Disabled in production."""
    if not settings.is_sandbox:
        raise HTTPException(status_code=403, detail="Sandbox operations are disabled")

    extension = anchor.extensions.sandbox
    if extension is None or not anchor.capabilities.sandbox:
        raise HTTPException(status_code=400, detail="Sandbox operations not supported for this provider")

    if body.action == "completeKyc":
        if not body.submission_id:
            raise HTTPException(status_code=400, detail="submission_id is required for completeKyc")
        logger.info(f"[Sandbox] Completing KYC for submission {body.submission_id}")
        await extension.complete_kyc(body.submission_id)
        return {"success": True, "message": "KYC marked as completed"}

    if body.action == "simulateFiatReceived":
        if not body.order_id:
            raise HTTPException(status_code=400, detail="order_id is required for simulateFiatReceived")
        logger.info(f"[Sandbox] Simulating fiat payment for order {body.order_id}")
        status_code = await extension.simulate_fiat_received(body.order_id)
        return {"success": True, "status_code": status_code}

    raise HTTPException(status_code=400, detail=f"Unknown action: {body.action}")


# ======================
# Customer cache
# ======================


@router.get("/customer-cache/{public_key}")
async def get_cached_customer(
    public_key: str,
    anchor: Anchor = Depends(get_anchor),
    repository: CustomerRepository = Depends(get_customer_repository),
):
    """Cached customer for a wallet, so a reconnecting wallet skips onboarding."""
    customer = await repository.get(storage_key(anchor.name, public_key))
    if customer is None:
        raise HTTPException(status_code=404, detail="No cached customer")
    return customer.model_dump()


@router.put("/customer-cache/{public_key}")
async def put_cached_customer(
    public_key: str,
    customer: Customer,
    anchor: Anchor = Depends(get_anchor),
    repository: CustomerRepository = Depends(get_customer_repository),
):
    await repository.set(storage_key(anchor.name, public_key), customer)
    return customer.model_dump()
