from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class OrderEvent(BaseModel):
    event_type: str  # payment_redirect_issued, payment_succeeded, payment_failed, status_changed, refund_required, refunded
    order_number: str
    source: str = "system"  # orchestrator, webhook:<provider>, admin
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def public_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "order_number": self.order_number,
            "source": self.source,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }
