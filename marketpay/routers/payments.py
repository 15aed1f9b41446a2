from decimal import Decimal

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import ORJSONResponse
from pydantic import Field

from marketpay.deps import get_gateway_registry, get_ingestor, get_orchestrator
from marketpay.gateways.registry import GatewayRegistry
from marketpay.gateways.types import PROVIDER_FAILURE_CODES, CamelModel, FailedOutcome, PaymentRequest, WebhookDelivery
from marketpay.services.payments import PaymentOrchestrator
from marketpay.services.webhooks import WebhookIngestor

router = APIRouter()


class CreateIntentRequest(CamelModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str | None = None
    metadata: dict[str, str] | None = None


class AttachMethodRequest(CamelModel):
    payment_method_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)


@router.get("/gateways")
async def list_gateways(gateways: GatewayRegistry = Depends(get_gateway_registry)):
    """Gateways this deployment supports, with their flow and mandatory fields."""
    return {"items": gateways.available()}


@router.post("/intents")
async def create_intent(body: CreateIntentRequest, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    """Pre-create a hosted-card intent; the client confirms it with the returned secret."""
    out = await orchestrator.create_intent(body.amount, body.currency, body.metadata)
    return {"clientSecret": out["client_secret"], "intentId": out["intent_id"]}


@router.post("/methods")
async def attach_method(body: AttachMethodRequest, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.attach_payment_method(body.payment_method_id, body.customer_id)


@router.get("/methods/{customer_id}")
async def list_methods(customer_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return {"items": await orchestrator.list_payment_methods(customer_id)}


@router.delete("/methods/{payment_method_id}")
async def detach_method(payment_method_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.detach_payment_method(payment_method_id)


@router.post("/webhook/{provider_id}")
async def provider_webhook(provider_id: str, request: Request, ingestor: WebhookIngestor = Depends(get_ingestor)):
    """Provider callback; the raw body is needed for signature checks."""
    delivery = WebhookDelivery(
        body=await request.body(),
        headers=dict(request.headers),
        client_ip=request.client.host if request.client else None,
    )
    return await ingestor.ingest(provider_id, delivery)


@router.post("/{gateway_id}")
async def process_payment(
    gateway_id: str,
    body: PaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Charge or start a redirect for one order. Declines are 200 with a failed outcome."""
    outcome = await orchestrator.process_payment(gateway_id, body)
    status_code = status.HTTP_200_OK
    if isinstance(outcome, FailedOutcome) and outcome.reason_code in PROVIDER_FAILURE_CODES:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return ORJSONResponse(status_code=status_code, content=outcome.model_dump(mode="json", by_alias=True))
