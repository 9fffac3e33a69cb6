"""Customer session state for one provider.

Holds the active wallet's customer and writes it through to a repository
keyed by provider and wallet public key, so the provider's customer id is
restored when the same wallet reconnects.
"""

import logging
from typing import Optional

from rampkit.anchors.base import Anchor
from rampkit.anchors.capabilities import looks_like_provider_customer_id
from rampkit.anchors.models import CreateCustomerInput, Customer, KycStatus
from rampkit.customers.repository import CustomerRepository

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "stellar:customer:"


def storage_key(provider_id: str, public_key: str) -> str:
    return f"{STORAGE_PREFIX}{provider_id}:{public_key}"


class CustomerStore:
    """Current customer for the connected wallet."""

    def __init__(self, repository: CustomerRepository, provider_id: str):
        self.repository = repository
        self.provider_id = provider_id
        self._customer: Optional[Customer] = None
        self._public_key: Optional[str] = None

    @property
    def current(self) -> Optional[Customer]:
        return self._customer

    @property
    def public_key(self) -> Optional[str]:
        return self._public_key

    @property
    def is_logged_in(self) -> bool:
        return self._customer is not None

    @property
    def is_kyc_approved(self) -> bool:
        return self._customer is not None and self._customer.kyc_status == KycStatus.APPROVED

    async def load(self, public_key: str) -> Optional[Customer]:
        """Restore the cached customer for a wallet, if any."""
        self._public_key = public_key
        self._customer = await self.repository.get(storage_key(self.provider_id, public_key))
        if self._customer is not None:
            logger.debug(f"Restored {self.provider_id} customer {self._customer.id}")
        return self._customer

    async def set(self, customer: Optional[Customer]) -> None:
        self._customer = customer
        await self._persist()

    async def update_kyc_status(self, status: KycStatus) -> None:
        if self._customer is None:
            return
        self._customer = self._customer.model_copy(update={"kyc_status": status})
        await self._persist()

    def clear(self) -> None:
        """Forget the active customer. The cached entry is kept for reconnects."""
        self._customer = None
        self._public_key = None

    async def _persist(self) -> None:
        if self._public_key is None or self._customer is None:
            return
        await self.repository.set(storage_key(self.provider_id, self._public_key), self._customer)


async def get_or_create_customer(
    anchor: Anchor,
    email: str,
    country: str = "MX",
    public_key: Optional[str] = None,
) -> Customer:
    """Find an existing customer by email, or create one.

    Email lookup only runs for providers that support it. A created id that
    does not match the provider's identity format is a local placeholder and
    is logged; such providers onboard through their terms of service
    extension.
    """
    if anchor.capabilities.supports_email_lookup:
        existing = await anchor.get_customer_by_email(email, country)
        if existing is not None:
            logger.info(f"[{anchor.name}] Found existing customer {existing.id}")
            return existing

    customer = await anchor.create_customer(
        CreateCustomerInput(email=email, country=country, public_key=public_key)
    )
    if not looks_like_provider_customer_id(anchor.name, customer.id):
        logger.warning(
            f"[{anchor.name}] Customer id {customer.id} is a local placeholder, "
            f"not usable for provider calls"
        )
    else:
        logger.info(f"[{anchor.name}] Created customer {customer.id}")
    return customer
