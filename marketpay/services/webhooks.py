"""Inbound provider callbacks: authenticate, dedupe, then hand off to the order state machine."""

from fastapi import Response

from marketpay.core.audit import log_event
from marketpay.core.exceptions import NotFoundError, UnknownGatewayError, WebhookAuthenticityError
from marketpay.core.logging import bind_payment_context, get_logger
from marketpay.core.money import to_money
from marketpay.gateways.base import PaymentGatewayAdapter
from marketpay.gateways.registry import GatewayRegistry
from marketpay.gateways.types import WebhookDelivery, WebhookNotification
from marketpay.models.order import Order
from marketpay.models.payment_transaction import PaymentTransaction
from marketpay.repositories.base import Repositories
from marketpay.services.orders import OrderStateMachine

log = get_logger(__name__)


class WebhookIngestor:
    def __init__(self, gateways: GatewayRegistry, repos: Repositories) -> None:
        self.gateways = gateways
        self.repos = repos
        self.orders = OrderStateMachine(repos)

    async def ingest(self, provider_id: str, delivery: WebhookDelivery) -> Response:
        """Apply one provider callback at most once.

        Nothing is written until the delivery has passed the provider's
        authenticity check and matches the stored order's amount and currency.
        Replays of an already-recorded (provider, reference) are acknowledged
        without side effects.
        """
        try:
            adapter = self.gateways.get(provider_id)
        except UnknownGatewayError:
            raise NotFoundError("Unknown payment provider")
        bind_payment_context(gateway=adapter.gateway_id)

        try:
            adapter.verify_webhook(delivery)
            await adapter.confirm_webhook(delivery)
        except WebhookAuthenticityError as e:
            log.warning("webhook_rejected", reason=e.reason, client_ip=delivery.client_ip)
            raise

        notification = adapter.parse_webhook(delivery)
        if notification is None:
            log.info("webhook_ignored")
            return adapter.acknowledge()
        bind_payment_context(reference=notification.reference)

        order = await self._resolve_order(adapter, notification)
        if order is None:
            log.warning("webhook_unknown_order", order_hint=notification.order_hint)
            return adapter.acknowledge()
        bind_payment_context(order=order.order_number)
        self._check_amount(order, notification)

        stored, created = await self.repos.transactions.insert_if_absent(
            PaymentTransaction(
                order_number=order.order_number,
                provider=adapter.gateway_id,
                provider_reference=notification.reference,
                amount=notification.amount if notification.amount is not None else order.total,
                currency=notification.currency or order.currency,
                status="success" if notification.succeeded else "failed",
                metadata={"event_type": notification.event_type, "source": "webhook", "payload": notification.payload},
            )
        )
        source = f"webhook:{adapter.gateway_id}"
        if not created:
            log.info("webhook_duplicate", stored_status=stored.status)
            if stored.status == "success" and order.payment_status == "pending":
                await self.orders.mark_paid(order.order_number, source=source)
            return adapter.acknowledge()

        if notification.succeeded:
            await log_event(
                self.repos.events,
                order.order_number,
                "payment_succeeded",
                source=source,
                metadata={"gateway": adapter.gateway_id, "reference": notification.reference},
            )
            await self.orders.mark_paid(order.order_number, source=source, reference=notification.reference)
        else:
            await log_event(
                self.repos.events,
                order.order_number,
                "payment_failed",
                source=source,
                metadata={"gateway": adapter.gateway_id, "reference": notification.reference, "event_type": notification.event_type},
            )
        log.info("webhook_applied", succeeded=notification.succeeded)
        return adapter.acknowledge()

    async def _resolve_order(self, adapter: PaymentGatewayAdapter, notification: WebhookNotification) -> Order | None:
        for candidate in (adapter.parse_reference(notification.reference), notification.order_hint):
            if not candidate:
                continue
            order = await self.repos.orders.get_order(candidate)
            if order:
                return order
        return None

    def _check_amount(self, order: Order, notification: WebhookNotification) -> None:
        if notification.amount is not None and to_money(notification.amount) != to_money(order.total):
            log.warning("webhook_amount_mismatch", expected=str(order.total), received=str(notification.amount))
            raise WebhookAuthenticityError("amount mismatch")
        if notification.currency and notification.currency.upper() != order.currency.upper():
            log.warning("webhook_currency_mismatch", expected=order.currency, received=notification.currency)
            raise WebhookAuthenticityError("currency mismatch")
