"""Shared FastAPI dependencies."""

from fastapi import Request

from marketpay.core.config import get_settings
from marketpay.gateways.registry import GatewayRegistry
from marketpay.repositories.base import Repositories
from marketpay.services.orders import OrderStateMachine
from marketpay.services.payments import PaymentOrchestrator
from marketpay.services.webhooks import WebhookIngestor


def get_repositories(request: Request) -> Repositories:
    """Dependency: repositories chosen at startup (REPOSITORY_BACKEND)."""
    return request.app.state.repositories


def get_gateway_registry(request: Request) -> GatewayRegistry:
    return request.app.state.gateways


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    return PaymentOrchestrator(
        get_gateway_registry(request),
        get_repositories(request),
        currency=get_settings().settlement_currency,
    )


def get_ingestor(request: Request) -> WebhookIngestor:
    return WebhookIngestor(get_gateway_registry(request), get_repositories(request))


def get_order_machine(request: Request) -> OrderStateMachine:
    return OrderStateMachine(get_repositories(request))
