"""MongoDB repositories (Beanie). Atomicity comes from the unique index and conditional updates."""

from datetime import datetime
from typing import Any

from beanie import UpdateResponse
from beanie.operators import In, Set
from pymongo.errors import DuplicateKeyError

from marketpay.core.exceptions import ConflictError
from marketpay.db.documents import BuyerDocument, OrderDocument, OrderEventDocument, PaymentTransactionDocument
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

_DOC_FIELDS = {"id", "revision_id"}


def _order(doc: OrderDocument | None) -> Order | None:
    if doc is None:
        return None
    return Order.model_validate(doc.model_dump(exclude=_DOC_FIELDS))


def _transaction(doc: PaymentTransactionDocument) -> PaymentTransaction:
    return PaymentTransaction.model_validate(doc.model_dump(exclude=_DOC_FIELDS))


class MongoOrderRepository(OrderRepository):
    async def create_order(self, order: Order) -> Order:
        doc = OrderDocument(**order.model_dump())
        try:
            await doc.insert()
        except DuplicateKeyError:
            raise ConflictError("Order number already exists", details={"order_number": order.order_number})
        return _order(doc)

    async def get_order(self, order_number: str) -> Order | None:
        return _order(await OrderDocument.find_one(OrderDocument.order_number == order_number))

    async def list_orders(
        self,
        buyer_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        filters = []
        if buyer_id is not None:
            filters.append(OrderDocument.buyer_id == buyer_id)
        if status is not None:
            filters.append(OrderDocument.status == status)
        docs = (
            await OrderDocument.find(*filters)
            .sort(-OrderDocument.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [_order(d) for d in docs]

    async def _conditional_update(self, order_number: str, conditions: list, changes: dict[str, Any]) -> Order | None:
        doc = await OrderDocument.find_one(
            OrderDocument.order_number == order_number,
            *conditions,
        ).update(
            Set({**changes, "updated_at": datetime.utcnow()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        return _order(doc)

    async def set_gateway(self, order_number: str, gateway: str) -> None:
        await self._conditional_update(order_number, [], {"gateway": gateway})

    async def update_order_status(
        self,
        order_number: str,
        status: str,
        expected: tuple[str, ...],
        extra: dict[str, Any] | None = None,
    ) -> Order | None:
        return await self._conditional_update(
            order_number,
            [In(OrderDocument.status, list(expected))],
            {"status": status, **(extra or {})},
        )

    async def update_order_payment_status(
        self,
        order_number: str,
        payment_status: str,
        expected: tuple[str, ...],
    ) -> Order | None:
        return await self._conditional_update(
            order_number,
            [In(OrderDocument.payment_status, list(expected))],
            {"payment_status": payment_status},
        )

    async def mark_paid(self, order_number: str) -> Order | None:
        return await self._conditional_update(
            order_number,
            [OrderDocument.payment_status == "pending", OrderDocument.status == "pending"],
            {"payment_status": "paid", "status": "processing"},
        )


class MongoTransactionRepository(TransactionRepository):
    async def find_by_provider_ref(self, provider: str, provider_reference: str) -> PaymentTransaction | None:
        doc = await PaymentTransactionDocument.find_one(
            PaymentTransactionDocument.provider == provider,
            PaymentTransactionDocument.provider_reference == provider_reference,
        )
        return _transaction(doc) if doc else None

    async def insert_if_absent(self, transaction: PaymentTransaction) -> tuple[PaymentTransaction, bool]:
        try:
            doc = await PaymentTransactionDocument(**transaction.model_dump()).insert()
        except DuplicateKeyError:
            existing = await self.find_by_provider_ref(transaction.provider, transaction.provider_reference)
            return existing or transaction, False
        return _transaction(doc), True

    async def list_for_order(self, order_number: str) -> list[PaymentTransaction]:
        docs = (
            await PaymentTransactionDocument.find(PaymentTransactionDocument.order_number == order_number)
            .sort(+PaymentTransactionDocument.created_at)
            .to_list()
        )
        return [_transaction(d) for d in docs]


class MongoOrderEventRepository(OrderEventRepository):
    async def append(self, event: OrderEvent) -> OrderEvent:
        await OrderEventDocument(**event.model_dump()).insert()
        return event

    async def list_for_order(self, order_number: str) -> list[OrderEvent]:
        docs = (
            await OrderEventDocument.find(OrderEventDocument.order_number == order_number)
            .sort(+OrderEventDocument.created_at)
            .to_list()
        )
        return [OrderEvent.model_validate(d.model_dump(exclude=_DOC_FIELDS)) for d in docs]


class MongoBuyerDirectory(BuyerDirectory):
    async def get_contact(self, buyer_id: str) -> BuyerContact | None:
        doc = await BuyerDocument.find_one(BuyerDocument.buyer_id == buyer_id)
        if not doc:
            return None
        return BuyerContact(buyer_id=doc.buyer_id, email=doc.email, name=doc.name, phone=doc.phone)


def mongo_repositories() -> Repositories:
    return Repositories(
        orders=MongoOrderRepository(),
        transactions=MongoTransactionRepository(),
        events=MongoOrderEventRepository(),
        buyers=MongoBuyerDirectory(),
    )
