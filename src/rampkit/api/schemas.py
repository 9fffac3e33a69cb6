"""Request bodies for the anchor proxy API."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from rampkit.anchors.models import DecimalString, FiatAccountInput


class CreateCustomerRequest(BaseModel):
    email: str = Field(..., min_length=3, description="Customer email")
    country: str = Field(default="MX", description="ISO country code")
    public_key: Optional[str] = Field(default=None, description="Stellar public key")


class OffRampRequest(BaseModel):
    """Off-ramp creation. Give either an existing ``fiat_account_id`` or a
    new ``bank_account`` to register first."""

    customer_id: str
    quote_id: str
    stellar_address: str
    from_currency: str
    to_currency: str
    amount: DecimalString
    fiat_account_id: Optional[str] = None
    bank_account: Optional[FiatAccountInput] = None
    bank_account_info: Optional[FiatAccountInput] = None
    memo: Optional[str] = None


class FiatAccountRequest(BaseModel):
    customer_id: str
    clabe: str
    beneficiary: str
    bank_name: str = ""
    account_number: str = ""


class KycDataRequest(BaseModel):
    customer_id: str
    kyc_data: dict[str, Any]


class KycFileRequest(BaseModel):
    customer_id: str
    submission_id: str
    file_type: str
    filename: str
    content_base64: str = Field(..., description="File content, base64 encoded")


class KycSubmitRequest(BaseModel):
    customer_id: str
    submission_id: str


class BlockchainWalletRequest(BaseModel):
    receiver_id: str
    address: str
    name: Optional[str] = None


class PayoutSubmitRequest(BaseModel):
    quote_id: str
    signed_transaction: str
    sender_wallet_address: str
    customer_id: str = ""


class SandboxRequest(BaseModel):
    action: str = Field(..., description="completeKyc or simulateFiatReceived")
    submission_id: Optional[str] = None
    order_id: Optional[str] = None


class KycIdentityRequest(BaseModel):
    customer_id: str
    public_key: str
    identity: dict[str, Any] = Field(..., description="Personal details, provider field names")


class KycDocumentsRequest(BaseModel):
    customer_id: str
    public_key: str
    documents: list[dict[str, Any]] = Field(..., min_length=1)


class KycAgreementsRequest(BaseModel):
    customer_id: str
    public_key: str
    bank_account_id: Optional[str] = None


class SepTransferRequest(BaseModel):
    """Body for the SEP-6/SEP-24 proxy. Other keys are passed to the anchor."""

    model_config = ConfigDict(extra="allow")

    action: str = Field(..., description="deposit or withdraw")
    token: Optional[str] = Field(default=None, description="SEP-10 JWT")
    asset_code: Optional[str] = None

    def params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})
