import os
from decimal import Decimal
from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio

# In-memory repositories and fake provider credentials; no network, no Mongo.
os.environ.setdefault("REPOSITORY_BACKEND", "memory")
os.environ.setdefault("MONGODB_DB_NAME", "marketpay_test")
os.environ.setdefault("PUBLIC_BASE_URL", "https://shop.test")
os.environ.setdefault("SETTLEMENT_CURRENCY", "USD")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("STRIPE_API_BASE", "https://stripe.test")
os.environ.setdefault("PAYFAST_MERCHANT_ID", "10000100")
os.environ.setdefault("PAYFAST_MERCHANT_KEY", "46f0cd694581a")
os.environ.setdefault("PAYFAST_PASSPHRASE", "jt7NOE43FZPn")
os.environ.setdefault("PAYFAST_VALIDATE_URL", "")
os.environ.setdefault("PAYTODAY_API_KEY", "pt_key")
os.environ.setdefault("PAYTODAY_SECRET_KEY", "pt_secret")
os.environ.setdefault("PAYTODAY_API_BASE", "https://paytoday.test")
os.environ.setdefault("DOP_MERCHANT_ID", "dop-merchant")
os.environ.setdefault("DOP_API_KEY", "dop_key")
os.environ.setdefault("DOP_WEBHOOK_SECRET", "dop_secret")
os.environ.setdefault("DOP_API_BASE", "https://dop.test")

FIXED_MILLIS = 1_700_000_000_000


def fixed_clock() -> int:
    return FIXED_MILLIS


class StubProvider:
    """httpx.MockTransport handler with canned responses per (method, path); records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], tuple[int, dict | str | None, type[Exception] | None]] = {}

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: dict | None = None,
        text: str | None = None,
        raises: type[Exception] | None = None,
    ) -> None:
        self.routes[(method.upper(), path)] = (status_code, text if text is not None else json, raises)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"message": "no such route"}})
        status_code, body, raises = route
        if raises is not None:
            raise raises("stubbed failure", request=request)
        if isinstance(body, str):
            return httpx.Response(status_code, text=body)
        return httpx.Response(status_code, json=body)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def stub() -> StubProvider:
    return StubProvider()


@pytest_asyncio.fixture
async def http(stub: StubProvider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub), timeout=5.0) as client:
        yield client


@pytest.fixture
def settings():
    from marketpay.core.config import get_settings
    return get_settings()


@pytest.fixture
def repos():
    from marketpay.repositories.memory import memory_repositories
    return memory_repositories()


@pytest.fixture
def gateways(settings, http):
    from marketpay.gateways.registry import build_registry
    return build_registry(settings, http, clock=fixed_clock)


@pytest.fixture
def orchestrator(gateways, repos):
    from marketpay.services.payments import PaymentOrchestrator
    return PaymentOrchestrator(gateways, repos, currency="USD")


@pytest.fixture
def ingestor(gateways, repos):
    from marketpay.services.webhooks import WebhookIngestor
    return WebhookIngestor(gateways, repos)


@pytest.fixture
def machine(repos):
    from marketpay.services.orders import OrderStateMachine
    return OrderStateMachine(repos)


@pytest.fixture
def make_order(machine) -> Callable:
    async def _make(order_number: str = "ORD-1", total: str = "129.99", buyer_id: str | None = None):
        return await machine.create_order(Decimal(total), "USD", buyer_id=buyer_id, order_number=order_number)
    return _make
