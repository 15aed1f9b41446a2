"""PayToday: API-created payment, buyer redirected to a hosted page, result by signed JSON webhook."""

from typing import Callable

import httpx

from marketpay.core.config import PayTodayConfig
from marketpay.core.exceptions import ProviderError, WebhookAuthenticityError, WebhookPayloadError
from marketpay.core.money import format_amount
from marketpay.core.security import verify_hmac_sha256
from marketpay.gateways.base import PaymentGatewayAdapter, epoch_millis
from marketpay.gateways.types import (
    PaymentOutcome,
    PaymentRequest,
    RedirectOutcome,
    WebhookDelivery,
    WebhookNotification,
)

SIGNATURE_HEADER = "X-PayToday-Signature"


class PayTodayGateway(PaymentGatewayAdapter):
    gateway_id = "paytoday"
    name = "PayToday"
    prefix = "PT"
    required_fields = ("customer_phone",)

    def __init__(self, config: PayTodayConfig, http: httpx.AsyncClient, clock: Callable[[], int] = epoch_millis) -> None:
        super().__init__(http, clock)
        self.config = config

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.config.api_key:
            missing.append("PAYTODAY_API_KEY")
        if not self.config.secret_key:
            missing.append("PAYTODAY_SECRET_KEY")
        return missing

    def build_payload(self, request: PaymentRequest, reference: str) -> dict:
        return {
            "reference": reference,
            "amount": format_amount(request.amount),
            "phoneNumber": request.customer_phone,
            "customerName": request.customer_name or "",
            "customerEmail": request.customer_email or "",
            "description": request.description or f"Order #{request.order_id}",
            "metadata": {
                "orderId": request.order_id,
                "customerId": request.customer_id or "",
            },
            "callbackUrl": self.config.callback_url,
            "returnUrl": request.return_url or "",
        }

    async def _dispatch(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        out = await self._send(
            "POST",
            f"{self.config.api_base.rstrip('/')}/v1/payments",
            json=self.build_payload(request, reference),
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )
        payment_url = out.get("paymentUrl")
        if not payment_url:
            raise ProviderError("provider_error", "PayToday response has no paymentUrl")
        return RedirectOutcome(gateway=self.gateway_id, reference=reference, redirect_url=payment_url)

    def verify_webhook(self, delivery: WebhookDelivery) -> None:
        if not verify_hmac_sha256(delivery.body, delivery.header(SIGNATURE_HEADER) or "", self.config.secret_key):
            raise WebhookAuthenticityError(f"invalid {SIGNATURE_HEADER}")

    def parse_webhook(self, delivery: WebhookDelivery) -> WebhookNotification | None:
        data = self._load_json(delivery)
        reference = self._text(data.get("reference"), "reference")
        status = self._text(data.get("status"), "status")
        if not reference or not status:
            raise WebhookPayloadError("reference and status are required")
        return WebhookNotification(
            provider=self.gateway_id,
            reference=reference,
            succeeded=status == "successful",
            event_type=f"payment.{status}",
            amount=self._amount(data.get("amount")),
            currency=self._currency(data.get("currency")),
            order_hint=self._order_hint(data.get("metadata")),
            payload=data,
        )
