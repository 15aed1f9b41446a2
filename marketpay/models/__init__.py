from marketpay.models.buyer import BuyerContact
from marketpay.models.order import Order
from marketpay.models.order_event import OrderEvent
from marketpay.models.payment_transaction import PaymentTransaction

__all__ = [
    "BuyerContact",
    "Order",
    "OrderEvent",
    "PaymentTransaction",
]
