import json
import re
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, ClassVar

import httpx
from fastapi import Response
from fastapi.responses import ORJSONResponse

from marketpay.core.exceptions import ConfigurationError, PaymentValidationError, ProviderError, WebhookPayloadError
from marketpay.core.logging import get_logger
from marketpay.core.money import to_money
from marketpay.gateways.types import PaymentOutcome, PaymentRequest, WebhookDelivery, WebhookNotification

log = get_logger(__name__)


def epoch_millis() -> int:
    return int(time.time() * 1000)


class PaymentGatewayAdapter(ABC):
    """One provider's integration behind the PaymentRequest -> PaymentOutcome contract.

    Adapters hold no state beyond their config and the shared HTTP client;
    persistence belongs to the orchestrator and the webhook ingestor.
    """

    gateway_id: ClassVar[str]
    name: ClassVar[str]
    prefix: ClassVar[str]
    flow: ClassVar[str] = "redirect"  # "hosted" | "redirect"
    required_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self, http: httpx.AsyncClient, clock: Callable[[], int] = epoch_millis) -> None:
        self.http = http
        self.clock = clock

    # -- request side --------------------------------------------------

    def validate(self, request: PaymentRequest) -> None:
        """Fail fast, before any network call, naming the first missing mandatory field."""
        for name in self.required_fields:
            if request.is_missing(name):
                alias = PaymentRequest.alias_for(name)
                raise PaymentValidationError(
                    alias,
                    f"{alias} is required for {self.name} payments",
                    gateway=self.gateway_id,
                )

    def missing_credentials(self) -> list[str]:
        return []

    def ensure_configured(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"{self.name} is not configured",
                details={"gateway": self.gateway_id, "missing": missing},
            )

    def new_reference(self, order_number: str) -> str:
        return f"{self.prefix}-{order_number}-{self.clock()}"

    def parse_reference(self, reference: str | None) -> str | None:
        """Recover the order number from "{prefix}-{order}-{millis}"; the order part may contain dashes."""
        if not reference or not isinstance(reference, str):
            return None
        m = re.fullmatch(rf"{re.escape(self.prefix)}-(?P<order>.+)-(?P<ts>\d{{13}})", reference.strip())
        return m.group("order") if m else None

    async def process(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        self.validate(request)
        return await self._dispatch(request, reference)

    @abstractmethod
    async def _dispatch(self, request: PaymentRequest, reference: str) -> PaymentOutcome:
        ...

    # -- webhook side --------------------------------------------------

    @abstractmethod
    def verify_webhook(self, delivery: WebhookDelivery) -> None:
        """Raise WebhookAuthenticityError unless the callback provably came from the provider."""
        ...

    async def confirm_webhook(self, delivery: WebhookDelivery) -> None:
        """Optional server-side confirmation with the provider, after verify_webhook passed."""
        return None

    @abstractmethod
    def parse_webhook(self, delivery: WebhookDelivery) -> WebhookNotification | None:
        """None for event types that carry no payment outcome."""
        ...

    def acknowledge(self) -> Response:
        return ORJSONResponse({"received": True})

    def describe(self) -> dict[str, Any]:
        return {
            "id": self.gateway_id,
            "name": self.name,
            "flow": self.flow,
            "required_fields": [PaymentRequest.alias_for(f) for f in self.required_fields],
            "configured": not self.missing_credentials(),
        }

    # -- outbound HTTP ------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Single outbound call; every failure mode becomes ProviderError. Never retried here."""
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            log.warning("provider_timeout", gateway=self.gateway_id, url=url)
            raise ProviderError("provider_timeout", f"{self.name} did not respond in time") from e
        except httpx.RequestError as e:
            log.warning("provider_unreachable", gateway=self.gateway_id, url=url, error=str(e))
            raise ProviderError("provider_unreachable", f"{self.name} is unreachable: {e}") from e
        if response.status_code >= 400:
            raise self._error_from_response(response)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("provider_error", f"{self.name} returned a non-JSON response", response.status_code) from e

    def _error_from_response(self, response: httpx.Response) -> ProviderError:
        message = response.text[:500] or response.reason_phrase
        log.warning("provider_error", gateway=self.gateway_id, status_code=response.status_code)
        return ProviderError("provider_error", f"{self.name} error: {message}", response.status_code)

    # -- webhook payload helpers ------------------------------------------

    def _load_json(self, delivery: WebhookDelivery) -> dict[str, Any]:
        try:
            data = json.loads(delivery.body)
        except ValueError as e:
            raise WebhookPayloadError(f"{self.name} webhook is not JSON: {e}")
        if not isinstance(data, dict):
            raise WebhookPayloadError(f"{self.name} webhook must be a JSON object")
        return data

    def _text(self, value: Any, field: str) -> str | None:
        """Identifier fields: strings and integers are accepted, anything else is malformed."""
        if value is None or value == "":
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise WebhookPayloadError(f"{self.name} webhook field {field} must be a string")
        return str(value).strip() or None

    def _currency(self, value: Any) -> str | None:
        if value is None or value == "":
            return None
        if not isinstance(value, str):
            raise WebhookPayloadError(f"{self.name} webhook currency must be a string")
        return value.strip().upper() or None

    def _order_hint(self, metadata: Any) -> str | None:
        if not isinstance(metadata, dict):
            return None
        return self._text(metadata.get("orderId"), "metadata.orderId")

    def _amount(self, value: Any) -> Decimal | None:
        if value is None or value == "":
            return None
        try:
            return to_money(value)
        except ValueError:
            raise WebhookPayloadError(f"{self.name} webhook amount is not a number")
