from datetime import datetime
from typing import Any

from beanie import DecimalAnnotation
from pydantic import BaseModel, Field

TRANSACTION_STATUSES = ("success", "failed", "pending")


class PaymentTransaction(BaseModel):
    """One attempt to collect payment. Immutable; a retry is a new record."""
    order_number: str
    provider: str
    provider_reference: str  # unique per provider: the replay de-duplication key
    amount: DecimalAnnotation
    currency: str
    status: str  # see TRANSACTION_STATUSES
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def public_dict(self) -> dict:
        return {
            "order_number": self.order_number,
            "provider": self.provider,
            "provider_reference": self.provider_reference,
            "amount": f"{self.amount:.2f}",
            "currency": self.currency,
            "status": self.status,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }
