"""Checkout: route a payment request to its gateway and record what happened."""

from decimal import Decimal
from typing import Any

from marketpay.core.audit import log_event
from marketpay.core.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentValidationError,
    ProviderError,
    ProviderUnavailableError,
)
from marketpay.core.logging import bind_payment_context, get_logger
from marketpay.core.money import to_money
from marketpay.gateways.registry import GatewayRegistry
from marketpay.gateways.types import (
    CompletedOutcome,
    FailedOutcome,
    PaymentOutcome,
    PaymentRequest,
    RedirectOutcome,
)
from marketpay.models.order import Order
from marketpay.models.payment_transaction import PaymentTransaction
from marketpay.repositories.base import Repositories
from marketpay.services.buyers import with_buyer_contact
from marketpay.services.orders import OrderStateMachine

log = get_logger(__name__)


class PaymentOrchestrator:
    def __init__(self, gateways: GatewayRegistry, repos: Repositories, currency: str = "USD") -> None:
        self.gateways = gateways
        self.repos = repos
        self.currency = currency.upper()
        self.orders = OrderStateMachine(repos)

    async def process_payment(self, gateway_id: str, request: PaymentRequest) -> PaymentOutcome:
        """Validate, dispatch and persist one payment attempt.

        Configuration and validation errors propagate; provider failures come
        back as a FailedOutcome. Redirect outcomes leave the order pending until
        the provider's webhook confirms it.
        """
        adapter = self.gateways.get(gateway_id)
        adapter.ensure_configured()
        bind_payment_context(gateway=adapter.gateway_id, order=request.order_id)

        order = await self.repos.orders.get_order(request.order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.payment_status != "pending" or order.status != "pending":
            raise ConflictError(
                "Order is not awaiting payment",
                details={"status": order.status, "payment_status": order.payment_status},
            )
        if to_money(request.amount) != to_money(order.total):
            raise PaymentValidationError(
                PaymentRequest.alias_for("amount"),
                "amount does not match the order total",
                gateway=adapter.gateway_id,
            )

        request = await with_buyer_contact(self.repos.buyers, request, order.buyer_id)
        adapter.validate(request)

        reference = adapter.new_reference(order.order_number)
        await self.repos.orders.set_gateway(order.order_number, adapter.gateway_id)
        log.info("payment_dispatched", reference=reference, amount=str(order.total))
        try:
            outcome = await adapter.process(request, reference)
        except ProviderError as e:
            outcome = FailedOutcome(
                gateway=adapter.gateway_id,
                reference=reference,
                reason_code=e.reason_code,
                message=e.message,
            )

        if isinstance(outcome, CompletedOutcome):
            await self._record_success(order, outcome)
        elif isinstance(outcome, RedirectOutcome):
            await log_event(
                self.repos.events,
                order.order_number,
                "payment_redirect_issued",
                source="checkout",
                metadata={"gateway": outcome.gateway, "reference": outcome.reference},
            )
        else:
            await self._record_failure(order, outcome)
        log.info("payment_outcome", reference=reference, outcome=outcome.status)
        return outcome

    async def _record_success(self, order: Order, outcome: CompletedOutcome) -> None:
        _, created = await self.repos.transactions.insert_if_absent(
            PaymentTransaction(
                order_number=order.order_number,
                provider=outcome.gateway,
                provider_reference=outcome.transaction_id,
                amount=order.total,
                currency=order.currency,
                status="success",
                metadata={"reference": outcome.reference, "source": "checkout"},
            )
        )
        if created:
            await log_event(
                self.repos.events,
                order.order_number,
                "payment_succeeded",
                source="checkout",
                metadata={"gateway": outcome.gateway, "transaction_id": outcome.transaction_id},
            )
        else:
            log.info("payment_already_recorded", transaction_id=outcome.transaction_id)
        await self.orders.mark_paid(
            order.order_number,
            source="checkout",
            reference=outcome.transaction_id if created else None,
        )

    async def _record_failure(self, order: Order, outcome: FailedOutcome) -> None:
        # Keyed by our attempt reference so a later webhook for the provider's
        # own id is never mistaken for a replay of this failure.
        metadata: dict[str, Any] = {"reason_code": outcome.reason_code, "message": outcome.message, "source": "checkout"}
        if outcome.transaction_id:
            metadata["provider_transaction_id"] = outcome.transaction_id
        await self.repos.transactions.insert_if_absent(
            PaymentTransaction(
                order_number=order.order_number,
                provider=outcome.gateway,
                provider_reference=outcome.reference,
                amount=order.total,
                currency=order.currency,
                status="failed",
                metadata=metadata,
            )
        )
        await log_event(
            self.repos.events,
            order.order_number,
            "payment_failed",
            source="checkout",
            metadata={"gateway": outcome.gateway, "reason_code": outcome.reason_code},
        )

    async def create_intent(self, amount: Decimal, currency: str | None = None, metadata: dict[str, str] | None = None) -> dict[str, str]:
        currency = (currency or self.currency).upper()
        if currency != self.currency:
            raise PaymentValidationError("currency", f"Only {self.currency} is supported")
        try:
            return await self.gateways.hosted_card().create_intent(amount, currency, metadata)
        except ProviderError as e:
            raise ProviderUnavailableError(e)

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict[str, Any]:
        try:
            return await self.gateways.hosted_card().attach_payment_method(payment_method_id, customer_id)
        except ProviderError as e:
            raise ProviderUnavailableError(e)

    async def list_payment_methods(self, customer_id: str) -> list[dict[str, Any]]:
        try:
            return await self.gateways.hosted_card().list_payment_methods(customer_id)
        except ProviderError as e:
            raise ProviderUnavailableError(e)

    async def detach_payment_method(self, payment_method_id: str) -> dict[str, Any]:
        try:
            return await self.gateways.hosted_card().detach_payment_method(payment_method_id)
        except ProviderError as e:
            raise ProviderUnavailableError(e)
