"""Hosted-card gateway (Stripe PaymentIntents over the REST API)."""

from decimal import Decimal
from typing import Any, Callable

import httpx

from marketpay.core.config import HostedCardConfig
from marketpay.core.exceptions import ProviderError, WebhookAuthenticityError, WebhookPayloadError
from marketpay.core.logging import get_logger
from marketpay.core.money import from_minor_units, to_minor_units
from marketpay.core.security import verify_stripe_signature
from marketpay.gateways.base import PaymentGatewayAdapter, epoch_millis
from marketpay.gateways.types import (
    CompletedOutcome,
    FailedOutcome,
    PaymentOutcome,
    PaymentRequest,
    RedirectOutcome,
    WebhookDelivery,
    WebhookNotification,
)

SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENT = "payment_intent.payment_failed"

log = get_logger(__name__)


class HostedCardGateway(PaymentGatewayAdapter):
    gateway_id = "hosted_card"
    name = "Stripe"
    prefix = "HC"
    flow = "hosted"
    required_fields = ("payment_method_id", "customer_id")

    def __init__(
        self,
        config: HostedCardConfig,
        http: httpx.AsyncClient,
        currency: str = "USD",
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        super().__init__(http, clock)
        self.config = config
        self.currency = currency

    def missing_credentials(self) -> list[str]:
        return [] if self.config.secret_key else ["STRIPE_SECRET_KEY"]

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.config.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self.config.api_base.rstrip('/')}{path}"

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        if error.get("type") == "card_error":
            code = error.get("decline_code") or error.get("code") or "card_declined"
            log.info("card_declined", gateway=self.gateway_id, code=code)
            return ProviderError(code, error.get("message", "Card declined"), response.status_code)
        return super()._error_from_response(response)

    async def _dispatch(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        data: dict[str, Any] = {
            "amount": to_minor_units(request.amount),
            "currency": self.currency.lower(),
            "customer": request.customer_id,
            "payment_method": request.payment_method_id,
            "confirm": "true",
            "metadata[orderId]": request.order_id,
            "metadata[reference]": reference,
        }
        if request.description:
            data["description"] = request.description
        if request.return_url:
            data["return_url"] = request.return_url
        else:
            data["automatic_payment_methods[enabled]"] = "true"
            data["automatic_payment_methods[allow_redirects]"] = "never"
        intent = await self._send("POST", self._url("/v1/payment_intents"), data=data, headers=self._headers(reference))
        status = intent.get("status")
        if status == "succeeded":
            return CompletedOutcome(gateway=self.gateway_id, reference=reference, transaction_id=intent["id"])
        next_action = intent.get("next_action") or {}
        if status == "requires_action" and next_action.get("type") == "redirect_to_url":
            return RedirectOutcome(
                gateway=self.gateway_id,
                reference=reference,
                redirect_url=next_action["redirect_to_url"]["url"],
            )
        return FailedOutcome(
            gateway=self.gateway_id,
            reference=reference,
            reason_code=f"payment_{status or 'unknown'}",
            message=f"Payment intent ended in status {status}",
            transaction_id=intent.get("id"),
        )

    async def create_intent(self, amount: Decimal, currency: str | None = None, metadata: dict[str, str] | None = None) -> dict[str, str]:
        """Pre-create an intent; the client confirms it with the returned secret."""
        self.ensure_configured()
        data: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": (currency or self.currency).lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)
        intent = await self._send("POST", self._url("/v1/payment_intents"), data=data, headers=self._headers())
        return {"client_secret": intent["client_secret"], "intent_id": intent["id"]}

    async def attach_payment_method(self, payment_method_id: str, customer_id: str) -> dict[str, Any]:
        self.ensure_configured()
        return await self._send(
            "POST",
            self._url(f"/v1/payment_methods/{payment_method_id}/attach"),
            data={"customer": customer_id},
            headers=self._headers(),
        )

    async def list_payment_methods(self, customer_id: str) -> list[dict[str, Any]]:
        self.ensure_configured()
        out = await self._send(
            "GET",
            self._url("/v1/payment_methods"),
            params={"customer": customer_id, "type": "card"},
            headers=self._headers(),
        )
        return out.get("data", [])

    async def detach_payment_method(self, payment_method_id: str) -> dict[str, Any]:
        self.ensure_configured()
        return await self._send(
            "POST",
            self._url(f"/v1/payment_methods/{payment_method_id}/detach"),
            headers=self._headers(),
        )

    def verify_webhook(self, delivery: WebhookDelivery) -> None:
        if not self.config.webhook_secret:
            raise WebhookAuthenticityError("webhook secret not configured")
        ok = verify_stripe_signature(
            delivery.body,
            delivery.header("Stripe-Signature") or "",
            self.config.webhook_secret,
            tolerance_seconds=self.config.signature_tolerance_seconds,
            now=self.clock() / 1000,
        )
        if not ok:
            raise WebhookAuthenticityError("invalid Stripe-Signature")

    def parse_webhook(self, delivery: WebhookDelivery) -> WebhookNotification | None:
        event = self._load_json(delivery)
        event_type = event.get("type")
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(event_type, str) or not isinstance(obj, dict):
            raise WebhookPayloadError("malformed Stripe event: type and data.object are required")
        if event_type not in (SUCCEEDED_EVENT, FAILED_EVENT):
            return None
        intent_id = self._text(obj.get("id"), "data.object.id")
        if not intent_id:
            raise WebhookPayloadError("payment intent id missing")
        minor = obj.get("amount_received") or obj.get("amount")
        if minor is not None and (isinstance(minor, bool) or not isinstance(minor, int)):
            raise WebhookPayloadError("payment intent amount must be an integer")
        return WebhookNotification(
            provider=self.gateway_id,
            reference=intent_id,
            succeeded=event_type == SUCCEEDED_EVENT,
            event_type=event_type,
            amount=from_minor_units(minor) if minor is not None else None,
            currency=self._currency(obj.get("currency")),
            order_hint=self._order_hint(obj.get("metadata")),
            payload=event,
        )
