"""Order lifecycle: the one place order and payment statuses change.

Every write is a compare-and-set on the current status, so a replayed or
out-of-order signal can neither regress an order nor apply a transition twice.
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from marketpay.core.audit import log_event
from marketpay.core.exceptions import BadRequestError, InvalidTransitionError, NotFoundError
from marketpay.core.logging import get_logger
from marketpay.core.money import to_money
from marketpay.models.order import ORDER_STATUSES, Order
from marketpay.repositories.base import Repositories

log = get_logger(__name__)

# processing is entered only through mark_paid
TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("cancelled",),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}


def new_order_number() -> str:
    return f"ORD-{uuid4().hex[:10].upper()}"


class OrderStateMachine:
    def __init__(self, repos: Repositories) -> None:
        self.repos = repos

    async def create_order(
        self,
        total: Decimal,
        currency: str,
        buyer_id: str | None = None,
        order_number: str | None = None,
    ) -> Order:
        total = to_money(total)
        if total <= 0:
            raise BadRequestError("Order total must be positive", details={"field": "total"})
        order = Order(
            order_number=order_number or new_order_number(),
            buyer_id=buyer_id,
            total=total,
            currency=currency.upper(),
        )
        order = await self.repos.orders.create_order(order)
        log.info("order_created", order=order.order_number, total=str(order.total), currency=order.currency)
        return order

    async def get(self, order_number: str) -> Order:
        order = await self.repos.orders.get_order(order_number)
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def mark_paid(self, order_number: str, source: str, reference: str | None = None) -> Order:
        """pending/pending -> paid/processing. Safe to call any number of times.

        `reference` identifies a newly recorded payment. A second distinct
        payment for an order that is already settled means the buyer was
        charged twice, so it is flagged for refund.
        """
        order = await self.repos.orders.mark_paid(order_number)
        if order:
            log.info("order_paid", order=order_number, source=source)
            await log_event(
                self.repos.events,
                order_number,
                "status_changed",
                source=source,
                metadata={"from": "pending", "to": "processing", "payment_status": "paid"},
            )
            return order

        current = await self.get(order_number)
        if current.payment_status in ("paid", "refunded"):
            if reference:
                log.warning("duplicate_payment", order=order_number, reference=reference, source=source)
                await log_event(
                    self.repos.events,
                    order_number,
                    "refund_required",
                    source=source,
                    metadata={"reason": "duplicate_payment", "reference": reference},
                )
            return current
        if current.payment_status == "pending" and current.status == "cancelled":
            # Money arrived after cancellation: record it, flag the refund.
            updated = await self.repos.orders.update_order_payment_status(order_number, "paid", expected=("pending",))
            if updated:
                log.warning("paid_after_cancellation", order=order_number, source=source)
                await log_event(
                    self.repos.events,
                    order_number,
                    "refund_required",
                    source=source,
                    metadata={"reason": "paid_after_cancellation", "reference": reference},
                )
                return updated
            return await self.get(order_number)
        log.warning(
            "paid_signal_ignored",
            order=order_number,
            status=current.status,
            payment_status=current.payment_status,
            source=source,
        )
        if current.payment_status == "failed":
            await log_event(
                self.repos.events,
                order_number,
                "refund_required",
                source=source,
                metadata={"reason": "paid_after_failure", "reference": reference},
            )
        return current

    async def mark_payment_failed(self, order_number: str, source: str) -> Order:
        order = await self.repos.orders.update_order_payment_status(order_number, "failed", expected=("pending",))
        if order:
            await log_event(self.repos.events, order_number, "payment_status_changed", source=source, metadata={"to": "failed"})
            return order
        current = await self.get(order_number)
        if current.payment_status == "failed":
            return current
        raise InvalidTransitionError(
            f"Payment status {current.payment_status} cannot become failed",
            details={"payment_status": current.payment_status},
        )

    async def mark_refunded(self, order_number: str, source: str) -> Order:
        order = await self.repos.orders.update_order_payment_status(order_number, "refunded", expected=("paid",))
        if order:
            await log_event(self.repos.events, order_number, "refunded", source=source)
            return order
        current = await self.get(order_number)
        if current.payment_status == "refunded":
            return current
        raise InvalidTransitionError(
            f"Payment status {current.payment_status} cannot be refunded",
            details={"payment_status": current.payment_status},
        )

    async def transition(self, order_number: str, target: str, source: str) -> Order:
        if target not in ORDER_STATUSES:
            raise BadRequestError(f"Unknown order status: {target}", details={"field": "status"})
        current = await self.get(order_number)
        if current.status == target:
            return current
        if current.is_terminal:
            raise InvalidTransitionError(
                f"Order is {current.status}; no further transitions",
                details={"status": current.status, "target": target},
            )
        if target == "processing":
            return await self._start_processing(current, source)
        if target not in TRANSITIONS[current.status]:
            raise InvalidTransitionError(
                f"Cannot move order from {current.status} to {target}",
                details={"status": current.status, "target": target},
            )
        extra = {"completed_at": datetime.utcnow()} if target == "delivered" else None
        updated = await self.repos.orders.update_order_status(order_number, target, expected=(current.status,), extra=extra)
        if not updated:
            raise InvalidTransitionError("Order changed concurrently; reload and retry", details={"target": target})
        await log_event(
            self.repos.events,
            order_number,
            "status_changed",
            source=source,
            metadata={"from": current.status, "to": target},
        )
        if target == "cancelled" and updated.payment_status == "paid":
            # Refund issuance is external; the event is the hand-off.
            await log_event(
                self.repos.events,
                order_number,
                "refund_required",
                source=source,
                metadata={"reason": "cancelled_after_payment", "amount": f"{updated.total:.2f}"},
            )
        log.info("order_transition", order=order_number, frm=current.status, to=target, source=source)
        return updated

    async def _start_processing(self, current: Order, source: str) -> Order:
        if current.payment_status != "paid":
            raise InvalidTransitionError(
                "Order cannot enter processing before payment",
                details={"payment_status": current.payment_status},
            )
        updated = await self.repos.orders.update_order_status(current.order_number, "processing", expected=("pending",))
        if not updated:
            raise InvalidTransitionError("Order changed concurrently; reload and retry", details={"target": "processing"})
        await log_event(
            self.repos.events,
            current.order_number,
            "status_changed",
            source=source,
            metadata={"from": current.status, "to": "processing"},
        )
        return updated
