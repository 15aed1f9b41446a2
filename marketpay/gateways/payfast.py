"""PayFast: form-post redirect, confirmation by ITN (Instant Transaction Notification)."""

from typing import Callable
from urllib.parse import parse_qsl, urlencode

import httpx
from fastapi import Response

from marketpay.core.config import PayFastConfig
from marketpay.core.exceptions import WebhookAuthenticityError, WebhookPayloadError
from marketpay.core.logging import get_logger
from marketpay.core.money import format_amount
from marketpay.core.security import constant_time_equals, ip_allowed, payfast_signature
from marketpay.gateways.base import PaymentGatewayAdapter, epoch_millis
from marketpay.gateways.types import (
    PaymentOutcome,
    PaymentRequest,
    RedirectOutcome,
    WebhookDelivery,
    WebhookNotification,
)

log = get_logger(__name__)


class PayFastGateway(PaymentGatewayAdapter):
    gateway_id = "payfast"
    name = "PayFast"
    prefix = "PF"
    required_fields = ("return_url", "cancel_url")

    def __init__(self, config: PayFastConfig, http: httpx.AsyncClient, clock: Callable[[], int] = epoch_millis) -> None:
        super().__init__(http, clock)
        self.config = config

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.config.merchant_id:
            missing.append("PAYFAST_MERCHANT_ID")
        if not self.config.merchant_key:
            missing.append("PAYFAST_MERCHANT_KEY")
        if not self.config.passphrase:
            missing.append("PAYFAST_PASSPHRASE")
        return missing

    def build_form(self, request: PaymentRequest, reference: str) -> dict[str, str]:
        # Field order is significant: the signature is computed over it.
        first, _, last = (request.customer_name or "").strip().partition(" ")
        fields = {
            "merchant_id": self.config.merchant_id,
            "merchant_key": self.config.merchant_key,
            "return_url": request.return_url or "",
            "cancel_url": request.cancel_url or "",
            "notify_url": self.config.notify_url,
            "name_first": first,
            "name_last": last.strip(),
            "email_address": request.customer_email or "",
            "m_payment_id": reference,
            "amount": format_amount(request.amount),
            "item_name": request.item_name or f"Order #{request.order_id}",
            "custom_str1": request.order_id,
            "custom_str2": request.customer_id or "",
        }
        fields = {k: v for k, v in fields.items() if v}
        fields["signature"] = payfast_signature(fields.items(), self.config.passphrase)
        return fields

    async def _dispatch(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        return RedirectOutcome(
            gateway=self.gateway_id,
            reference=reference,
            redirect_url=self.config.process_url,
            form_fields=self.build_form(request, reference),
        )

    def _fields(self, delivery: WebhookDelivery) -> list[tuple[str, str]]:
        try:
            return parse_qsl(delivery.body.decode("utf-8"), keep_blank_values=True, strict_parsing=True)
        except (UnicodeDecodeError, ValueError) as e:
            raise WebhookPayloadError(f"malformed ITN body: {e}")

    def verify_webhook(self, delivery: WebhookDelivery) -> None:
        # Without a passphrase the md5 covers only attacker-chosen fields.
        if self.missing_credentials():
            raise WebhookAuthenticityError("PayFast credentials not configured")
        if not ip_allowed(delivery.client_ip, self.config.allowed_ips):
            raise WebhookAuthenticityError(f"source address {delivery.client_ip} not allowed")
        fields = self._fields(delivery)
        received = dict(fields)
        expected = payfast_signature(fields, self.config.passphrase, skip_blank=False)
        if not constant_time_equals(received.get("signature"), expected):
            raise WebhookAuthenticityError("invalid ITN signature")
        if received.get("merchant_id") != self.config.merchant_id:
            raise WebhookAuthenticityError("merchant id mismatch")

    def parse_webhook(self, delivery: WebhookDelivery) -> WebhookNotification | None:
        data = dict(self._fields(delivery))
        reference = data.get("m_payment_id")
        payment_status = data.get("payment_status")
        if not reference or not payment_status:
            raise WebhookPayloadError("m_payment_id and payment_status are required")
        return WebhookNotification(
            provider=self.gateway_id,
            reference=reference,
            succeeded=payment_status == "COMPLETE",
            event_type=f"itn.{payment_status.lower()}",
            amount=self._amount(data.get("amount_gross")),
            order_hint=data.get("custom_str1") or None,
            payload=data,
        )

    def acknowledge(self) -> Response:
        # PayFast expects an empty 200.
        return Response(status_code=200, content=b"")

    async def confirm_webhook(self, delivery: WebhookDelivery) -> None:
        """Post the ITN back to PayFast's validate endpoint; anything but VALID is rejected."""
        if not self.config.validate_url:
            return
        fields = [(k, v) for k, v in self._fields(delivery) if k != "signature"]
        try:
            response = await self.http.post(
                self.config.validate_url,
                content=urlencode(fields).encode("utf-8"),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            log.warning("payfast_validate_unreachable", error=str(e))
            raise WebhookAuthenticityError("ITN validation unavailable") from e
        if response.status_code != 200 or response.text.strip() != "VALID":
            raise WebhookAuthenticityError("ITN not confirmed by PayFast")
