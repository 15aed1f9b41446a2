"""Beanie documents backing the Mongo repositories."""

from beanie import Document
from pymongo import ASCENDING, DESCENDING, IndexModel

from marketpay.models.buyer import BuyerContact
from marketpay.models.order import Order
from marketpay.models.order_event import OrderEvent
from marketpay.models.payment_transaction import PaymentTransaction


class OrderDocument(Order, Document):
    class Settings:
        name = "orders"
        indexes = [
            IndexModel([("order_number", ASCENDING)], name="order_number_unique", unique=True),
            IndexModel([("buyer_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("status", ASCENDING)]),
        ]


class PaymentTransactionDocument(PaymentTransaction, Document):
    class Settings:
        name = "payment_transactions"
        indexes = [
            IndexModel(
                [("provider", ASCENDING), ("provider_reference", ASCENDING)],
                name="provider_reference_unique",
                unique=True,
            ),
            IndexModel([("order_number", ASCENDING), ("created_at", DESCENDING)]),
        ]


class OrderEventDocument(OrderEvent, Document):
    class Settings:
        name = "order_events"
        indexes = [
            [("order_number", 1), ("created_at", 1)],
            [("event_type", 1)],
        ]


class BuyerDocument(BuyerContact, Document):
    # Owned by the identity service; read here, never written.
    role: str = "customer"

    class Settings:
        name = "users"
        indexes = [IndexModel([("buyer_id", ASCENDING)], unique=True)]
