"""Customer cache repositories.

Customers are cached per provider and wallet so provider-issued ids survive
restarts without a round trip. The cache is not authoritative: KYC status is
refreshed from the provider.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rampkit.anchors.models import Customer
from rampkit.customers.database import session_scope
from rampkit.customers.models import CachedCustomer

logger = logging.getLogger(__name__)


class CustomerRepository(ABC):
    """Key-value store for cached customers."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def set(self, key: str, customer: Customer) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class InMemoryCustomerRepository(CustomerRepository):
    def __init__(self):
        self._items: dict[str, str] = {}

    async def get(self, key: str) -> Optional[Customer]:
        raw = self._items.get(key)
        if raw is None:
            return None
        return Customer.model_validate_json(raw)

    async def set(self, key: str, customer: Customer) -> None:
        self._items[key] = customer.model_dump_json()

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class SqlCustomerRepository(CustomerRepository):
    """Customer cache in a SQL table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, key: str) -> Optional[Customer]:
        async with session_scope(self.session_factory) as session:
            row = await session.get(CachedCustomer, key)
            if row is None:
                return None
            try:
                return Customer.model_validate_json(row.data)
            except ValidationError:
                # Unreadable entry: drop it so the customer is fetched again
                logger.warning(f"Dropping unreadable cached customer {key}")
                await session.delete(row)
                return None

    async def set(self, key: str, customer: Customer) -> None:
        async with session_scope(self.session_factory) as session:
            row = await session.get(CachedCustomer, key)
            if row is None:
                session.add(
                    CachedCustomer(key=key, customer_id=customer.id, data=customer.model_dump_json())
                )
            else:
                row.customer_id = customer.id
                row.data = customer.model_dump_json()

    async def delete(self, key: str) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(delete(CachedCustomer).where(CachedCustomer.key == key))

    async def find_by_customer_id(self, customer_id: str) -> list[str]:
        """Keys caching a given provider customer id."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(CachedCustomer.key).where(CachedCustomer.customer_id == customer_id)
            )
            return list(result.scalars().all())
