from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from marketpay.core.config import get_settings
from marketpay.models.buyer import BuyerContact
from marketpay.models.order import Order
from marketpay.models.order_event import OrderEvent
from marketpay.models.payment_transaction import PaymentTransaction


class OrderRepository(ABC):
    """Order lifecycle store. Every status write is compare-and-set on the current value."""

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        """Insert; ConflictError if the order number is taken."""
        ...

    @abstractmethod
    async def get_order(self, order_number: str) -> Order | None:
        ...

    @abstractmethod
    async def list_orders(
        self,
        buyer_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        ...

    @abstractmethod
    async def set_gateway(self, order_number: str, gateway: str) -> None:
        ...

    @abstractmethod
    async def update_order_status(
        self,
        order_number: str,
        status: str,
        expected: tuple[str, ...],
        extra: dict[str, Any] | None = None,
    ) -> Order | None:
        """Set status only if the current status is in `expected`; None when the precondition fails."""
        ...

    @abstractmethod
    async def update_order_payment_status(
        self,
        order_number: str,
        payment_status: str,
        expected: tuple[str, ...],
    ) -> Order | None:
        """Set payment status only if the current payment status is in `expected`."""
        ...

    @abstractmethod
    async def mark_paid(self, order_number: str) -> Order | None:
        """Single conditional update: payment pending -> paid and status pending -> processing."""
        ...


class TransactionRepository(ABC):
    @abstractmethod
    async def find_by_provider_ref(self, provider: str, provider_reference: str) -> PaymentTransaction | None:
        ...

    @abstractmethod
    async def insert_if_absent(self, transaction: PaymentTransaction) -> tuple[PaymentTransaction, bool]:
        """Atomic create-if-absent on (provider, provider_reference).

        Returns (stored, created); when created is False, stored is the existing record.
        """
        ...

    @abstractmethod
    async def list_for_order(self, order_number: str) -> list[PaymentTransaction]:
        ...


class OrderEventRepository(ABC):
    @abstractmethod
    async def append(self, event: OrderEvent) -> OrderEvent:
        ...

    @abstractmethod
    async def list_for_order(self, order_number: str) -> list[OrderEvent]:
        ...


class BuyerDirectory(ABC):
    @abstractmethod
    async def get_contact(self, buyer_id: str) -> BuyerContact | None:
        ...


@dataclass
class Repositories:
    orders: OrderRepository
    transactions: TransactionRepository
    events: OrderEventRepository
    buyers: BuyerDirectory


def get_repositories() -> Repositories:
    settings = get_settings()
    if settings.repository_backend == "memory":
        from marketpay.repositories.memory import memory_repositories
        return memory_repositories()
    from marketpay.repositories.mongo import mongo_repositories
    return mongo_repositories()
