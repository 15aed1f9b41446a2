from datetime import datetime

from beanie import DecimalAnnotation
from pydantic import BaseModel, Field

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "refunded", "failed")
TERMINAL_STATUSES = ("delivered", "cancelled")


class Order(BaseModel):
    """An order being paid for. Status-transitioned, never deleted."""
    order_number: str  # externally visible, e.g. ORD-7
    buyer_id: str | None = None
    total: DecimalAnnotation
    currency: str = "USD"
    status: str = "pending"  # see ORDER_STATUSES
    payment_status: str = "pending"  # see PAYMENT_STATUSES
    gateway: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def public_dict(self) -> dict:
        return {
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "total": f"{self.total:.2f}",
            "currency": self.currency,
            "status": self.status,
            "payment_status": self.payment_status,
            "gateway": self.gateway,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
