"""SEP-12: KYC customer records."""

import logging
from enum import Enum
from typing import Optional

from rampkit.anchors.models import KycStatus
from rampkit.sep.base import SepHttp
from rampkit.sep.models import KycCustomer

logger = logging.getLogger(__name__)


class Sep12Status(str, Enum):
    ACCEPTED = "ACCEPTED"
    PROCESSING = "PROCESSING"
    NEEDS_INFO = "NEEDS_INFO"
    REJECTED = "REJECTED"


SEP12_KYC_STATUS_MAP = {
    Sep12Status.ACCEPTED: KycStatus.APPROVED,
    Sep12Status.PROCESSING: KycStatus.PENDING,
    Sep12Status.NEEDS_INFO: KycStatus.UPDATE_REQUIRED,
    Sep12Status.REJECTED: KycStatus.REJECTED,
}


def to_kyc_status(status: str) -> KycStatus:
    try:
        return SEP12_KYC_STATUS_MAP[Sep12Status(status)]
    except ValueError:
        return KycStatus.NOT_STARTED


# SEP-9 standard field names
SEP9_NATURAL_PERSON_FIELDS = {
    "first_name": "First name",
    "last_name": "Last name",
    "additional_name": "Middle name or other additional name",
    "address_country_code": "Country code (ISO 3166-1 alpha-2)",
    "state_or_province": "State, province, or region",
    "city": "City",
    "postal_code": "Postal/ZIP code",
    "address": "Street address",
    "mobile_number": "Mobile phone number",
    "email_address": "Email address",
    "birth_date": "Date of birth (YYYY-MM-DD)",
    "birth_place": "Place of birth",
    "birth_country_code": "Country of birth (ISO 3166-1 alpha-2)",
    "bank_account_number": "Bank account number",
    "bank_number": "Bank routing/sort code",
    "bank_phone_number": "Bank phone number",
    "bank_branch_number": "Bank branch number",
    "tax_id": "Tax ID number",
    "tax_id_name": "Type of tax ID",
    "id_type": "Type of ID document",
    "id_country_code": "Country that issued ID (ISO 3166-1 alpha-2)",
    "id_issue_date": "ID issue date (YYYY-MM-DD)",
    "id_expiration_date": "ID expiration date (YYYY-MM-DD)",
    "id_number": "ID number",
    "photo_id_front": "Front of ID document (binary)",
    "photo_id_back": "Back of ID document (binary)",
    "notary_approval_of_photo_id": "Notarized ID document (binary)",
    "photo_proof_residence": "Proof of residence document (binary)",
    "sex": "Gender (male/female)",
    "occupation": "Occupation",
    "employer_name": "Employer name",
    "employer_address": "Employer address",
    "language_code": "Preferred language (ISO 639-1)",
}

SEP9_ORGANIZATION_FIELDS = {
    "organization_name": "Legal name of organization",
    "organization_VAT_number": "VAT number",
    "organization_registration_number": "Registration number",
    "organization_registration_date": "Registration date (YYYY-MM-DD)",
    "organization_registered_address": "Registered address",
    "organization_number_of_shareholders": "Number of shareholders",
    "organization_shareholder_name": "Name of shareholder",
    "organization_photo_incorporation_doc": "Incorporation document (binary)",
    "organization_photo_proof_address": "Proof of address (binary)",
    "organization_address_country_code": "Country code (ISO 3166-1 alpha-2)",
    "organization_state_or_province": "State, province, or region",
    "organization_city": "City",
    "organization_postal_code": "Postal/ZIP code",
    "organization_director_name": "Director name",
    "organization_website": "Organization website",
    "organization_email": "Organization email",
    "organization_phone": "Organization phone",
}


class Sep12Client:
    def __init__(self, kyc_server: str, http: SepHttp):
        self.kyc_server = kyc_server.rstrip("/")
        self.http = http

    async def get_customer(
        self,
        token: str,
        id: Optional[str] = None,
        account: Optional[str] = None,
        memo: Optional[str] = None,
        memo_type: Optional[str] = None,
        type: Optional[str] = None,
        lang: Optional[str] = None,
    ) -> KycCustomer:
        data = await self.http.request(
            "GET",
            f"{self.kyc_server}/customer",
            "get customer",
            token=token,
            params={
                "id": id,
                "account": account,
                "memo": memo,
                "memo_type": memo_type,
                "type": type,
                "lang": lang,
            },
        )
        return KycCustomer.model_validate(data)

    async def put_customer(self, token: str, fields: dict[str, str | bytes]) -> str:
        """Create or update a customer from SEP-9 fields.

        Sent as JSON unless a field holds bytes, in which case the request
        is multipart with those fields as files.

        Returns:
            The anchor's customer id
        """
        url = f"{self.kyc_server}/customer"
        files = {
            key: (key, value) for key, value in fields.items() if isinstance(value, bytes)
        }
        if files:
            text = {
                key: str(value)
                for key, value in fields.items()
                if value is not None and not isinstance(value, bytes)
            }
            data = await self.http.request(
                "PUT", url, "update customer", token=token, form=text, files=files
            )
        else:
            body = {key: value for key, value in fields.items() if isinstance(value, str)}
            data = await self.http.request(
                "PUT", url, "update customer", token=token, json_body=body
            )
        return data["id"]

    async def delete_customer(
        self,
        token: str,
        account: Optional[str] = None,
        memo: Optional[str] = None,
        memo_type: Optional[str] = None,
    ) -> None:
        body = {
            key: value
            for key, value in (("account", account), ("memo", memo), ("memo_type", memo_type))
            if value
        }
        await self.http.request(
            "DELETE", f"{self.kyc_server}/customer", "delete customer", token=token, json_body=body
        )

    async def get_customer_status(
        self, token: str, type: str, account: Optional[str] = None
    ) -> str:
        customer = await self.get_customer(token, account=account, type=type)
        return customer.status
