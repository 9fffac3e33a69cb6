"""Customer cache and session state."""

from rampkit.customers.repository import (
    CustomerRepository,
    InMemoryCustomerRepository,
    SqlCustomerRepository,
)
from rampkit.customers.store import CustomerStore, get_or_create_customer

__all__ = [
    "CustomerRepository",
    "CustomerStore",
    "InMemoryCustomerRepository",
    "SqlCustomerRepository",
    "get_or_create_customer",
]
