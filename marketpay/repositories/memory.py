"""In-process repositories for tests and local runs (REPOSITORY_BACKEND=memory)."""

import asyncio
from datetime import datetime
from typing import Any

from marketpay.core.exceptions import ConflictError
from marketpay.models.buyer import BuyerContact
from marketpay.models.order import Order
from marketpay.models.order_event import OrderEvent
from marketpay.models.payment_transaction import PaymentTransaction
from marketpay.repositories.base import (
    BuyerDirectory,
    OrderEventRepository,
    OrderRepository,
    Repositories,
    TransactionRepository,
)


class MemoryOrderRepository(OrderRepository):
    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def create_order(self, order: Order) -> Order:
        async with self._lock:
            if order.order_number in self._orders:
                raise ConflictError("Order number already exists", details={"order_number": order.order_number})
            self._orders[order.order_number] = order.model_copy(deep=True)
            self.writes += 1
        return order.model_copy(deep=True)

    async def get_order(self, order_number: str) -> Order | None:
        order = self._orders.get(order_number)
        return order.model_copy(deep=True) if order else None

    async def list_orders(
        self,
        buyer_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        items = [
            o for o in self._orders.values()
            if (buyer_id is None or o.buyer_id == buyer_id) and (status is None or o.status == status)
        ]
        items.sort(key=lambda o: o.created_at, reverse=True)
        return [o.model_copy(deep=True) for o in items[offset:offset + limit]]

    async def _conditional_update(self, order_number: str, conditions: dict[str, tuple[str, ...]], changes: dict[str, Any]) -> Order | None:
        async with self._lock:
            order = self._orders.get(order_number)
            if order is None:
                return None
            for field, allowed in conditions.items():
                if getattr(order, field) not in allowed:
                    return None
            updated = order.model_copy(update={**changes, "updated_at": datetime.utcnow()}, deep=True)
            self._orders[order_number] = updated
            self.writes += 1
            return updated.model_copy(deep=True)

    async def set_gateway(self, order_number: str, gateway: str) -> None:
        await self._conditional_update(order_number, {}, {"gateway": gateway})

    async def update_order_status(
        self,
        order_number: str,
        status: str,
        expected: tuple[str, ...],
        extra: dict[str, Any] | None = None,
    ) -> Order | None:
        return await self._conditional_update(order_number, {"status": expected}, {"status": status, **(extra or {})})

    async def update_order_payment_status(
        self,
        order_number: str,
        payment_status: str,
        expected: tuple[str, ...],
    ) -> Order | None:
        return await self._conditional_update(order_number, {"payment_status": expected}, {"payment_status": payment_status})

    async def mark_paid(self, order_number: str) -> Order | None:
        return await self._conditional_update(
            order_number,
            {"payment_status": ("pending",), "status": ("pending",)},
            {"payment_status": "paid", "status": "processing"},
        )


class MemoryTransactionRepository(TransactionRepository):
    def __init__(self) -> None:
        self._items: dict[tuple[str, str], PaymentTransaction] = {}
        self._lock = asyncio.Lock()

    async def find_by_provider_ref(self, provider: str, provider_reference: str) -> PaymentTransaction | None:
        tx = self._items.get((provider, provider_reference))
        return tx.model_copy(deep=True) if tx else None

    async def insert_if_absent(self, transaction: PaymentTransaction) -> tuple[PaymentTransaction, bool]:
        key = (transaction.provider, transaction.provider_reference)
        async with self._lock:
            existing = self._items.get(key)
            if existing is not None:
                return existing.model_copy(deep=True), False
            self._items[key] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True), True

    async def list_for_order(self, order_number: str) -> list[PaymentTransaction]:
        items = [t for t in self._items.values() if t.order_number == order_number]
        items.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in items]

    def count(self) -> int:
        return len(self._items)


class MemoryOrderEventRepository(OrderEventRepository):
    def __init__(self) -> None:
        self._events: list[OrderEvent] = []

    async def append(self, event: OrderEvent) -> OrderEvent:
        self._events.append(event.model_copy(deep=True))
        return event

    async def list_for_order(self, order_number: str) -> list[OrderEvent]:
        return [e.model_copy(deep=True) for e in self._events if e.order_number == order_number]


class MemoryBuyerDirectory(BuyerDirectory):
    def __init__(self, contacts: list[BuyerContact] | None = None) -> None:
        self._contacts = {c.buyer_id: c for c in contacts or []}

    def add(self, contact: BuyerContact) -> None:
        self._contacts[contact.buyer_id] = contact

    async def get_contact(self, buyer_id: str) -> BuyerContact | None:
        return self._contacts.get(buyer_id)


def memory_repositories() -> Repositories:
    return Repositories(
        orders=MemoryOrderRepository(),
        transactions=MemoryTransactionRepository(),
        events=MemoryOrderEventRepository(),
        buyers=MemoryBuyerDirectory(),
    )
