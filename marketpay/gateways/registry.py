from typing import Callable, Iterable

import httpx

from marketpay.core.config import Settings
from marketpay.core.exceptions import UnknownGatewayError
from marketpay.gateways.base import PaymentGatewayAdapter, epoch_millis
from marketpay.gateways.dop import DopGateway
from marketpay.gateways.hosted_card import HostedCardGateway
from marketpay.gateways.payfast import PayFastGateway
from marketpay.gateways.paytoday import PayTodayGateway


class GatewayRegistry:
    """Closed set of adapters keyed by gateway id, resolved once at startup."""

    def __init__(self, adapters: Iterable[PaymentGatewayAdapter]) -> None:
        self._adapters = {a.gateway_id: a for a in adapters}

    def get(self, gateway_id: str) -> PaymentGatewayAdapter:
        key = (gateway_id or "").strip().lower()
        if key not in self._adapters:
            raise UnknownGatewayError(gateway_id)
        return self._adapters[key]

    def hosted_card(self) -> HostedCardGateway:
        return self.get(HostedCardGateway.gateway_id)  # type: ignore[return-value]

    def __contains__(self, gateway_id: str) -> bool:
        return gateway_id in self._adapters

    def available(self) -> list[dict]:
        return [a.describe() for a in self._adapters.values()]


def build_registry(
    settings: Settings,
    http: httpx.AsyncClient,
    clock: Callable[[], int] = epoch_millis,
) -> GatewayRegistry:
    currency = settings.settlement_currency
    return GatewayRegistry([
        HostedCardGateway(settings.hosted_card_config(), http, currency=currency, clock=clock),
        PayFastGateway(settings.payfast_config(), http, clock=clock),
        PayTodayGateway(settings.paytoday_config(), http, clock=clock),
        DopGateway(settings.dop_config(), http, currency=currency, clock=clock),
    ])


def build_http_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Shared outbound client; every provider call carries this timeout."""
    return httpx.AsyncClient(timeout=settings.provider_timeout_seconds, transport=transport)
