"""Order event trail: payment attempts, status changes and refunds to action."""

from typing import Any

from marketpay.models.order_event import OrderEvent
from marketpay.repositories.base import OrderEventRepository


async def log_event(
    events: OrderEventRepository,
    order_number: str,
    event_type: str,
    source: str = "system",
    metadata: dict[str, Any] | None = None,
) -> OrderEvent:
    """Append to order_events."""
    return await events.append(
        OrderEvent(
            order_number=order_number,
            event_type=event_type,
            source=source,
            metadata=metadata or {},
        )
    )
