"""Digital Online Payments (DOP): hosted checkout, webhook authenticated by a shared-secret field."""

from typing import Callable

import httpx

from marketpay.core.config import DopConfig
from marketpay.core.exceptions import ProviderError, WebhookAuthenticityError, WebhookPayloadError
from marketpay.core.money import format_amount
from marketpay.core.security import constant_time_equals
from marketpay.gateways.base import PaymentGatewayAdapter, epoch_millis
from marketpay.gateways.types import (
    PaymentOutcome,
    PaymentRequest,
    RedirectOutcome,
    WebhookDelivery,
    WebhookNotification,
)


class DopGateway(PaymentGatewayAdapter):
    gateway_id = "dop"
    name = "Digital Online Payments"
    prefix = "DOP"
    required_fields = ("return_url",)

    def __init__(
        self,
        config: DopConfig,
        http: httpx.AsyncClient,
        currency: str = "USD",
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        super().__init__(http, clock)
        self.config = config
        self.currency = currency

    def missing_credentials(self) -> list[str]:
        return [
            name for name, value in (
                ("DOP_MERCHANT_ID", self.config.merchant_id),
                ("DOP_API_KEY", self.config.api_key),
                ("DOP_WEBHOOK_SECRET", self.config.webhook_secret),
            )
            if not value
        ]

    def build_payload(self, request: PaymentRequest, reference: str) -> dict:
        return {
            "merchantId": self.config.merchant_id,
            "transactionId": reference,
            "amount": format_amount(request.amount),
            "currency": self.currency,
            "customerName": request.customer_name or "",
            "customerEmail": request.customer_email or "",
            "description": request.description or f"Order #{request.order_id}",
            "metadata": {
                "orderId": request.order_id,
                "customerId": request.customer_id or "",
            },
            "callbackUrl": self.config.callback_url,
            "returnUrl": request.return_url,
        }

    async def _dispatch(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        out = await self._send(
            "POST",
            f"{self.config.api_base.rstrip('/')}/v1/transactions",
            json=self.build_payload(request, reference),
            headers={"X-Merchant-Id": self.config.merchant_id, "X-Api-Key": self.config.api_key},
        )
        payment_url = out.get("paymentUrl")
        if not payment_url:
            raise ProviderError("provider_error", "DOP response has no paymentUrl")
        return RedirectOutcome(gateway=self.gateway_id, reference=reference, redirect_url=payment_url)

    def verify_webhook(self, delivery: WebhookDelivery) -> None:
        data = self._load_json(delivery)
        if not constant_time_equals(str(data.get("merchant_secret") or ""), self.config.webhook_secret):
            raise WebhookAuthenticityError("shared secret mismatch")
        if data.get("merchant_id") != self.config.merchant_id:
            raise WebhookAuthenticityError("merchant id mismatch")

    def parse_webhook(self, delivery: WebhookDelivery) -> WebhookNotification | None:
        data = self._load_json(delivery)
        reference = self._text(data.get("transaction_id"), "transaction_id")
        status = self._text(data.get("status"), "status")
        if not reference or not status:
            raise WebhookPayloadError("transaction_id and status are required")
        # The shared secret must not end up in transaction metadata.
        payload = {k: v for k, v in data.items() if k != "merchant_secret"}
        return WebhookNotification(
            provider=self.gateway_id,
            reference=reference,
            succeeded=status == "completed",
            event_type=f"transaction.{status}",
            amount=self._amount(data.get("amount")),
            currency=self._currency(data.get("currency")),
            order_hint=self._order_hint(data.get("metadata")),
            payload=payload,
        )
