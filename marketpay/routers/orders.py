from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from marketpay.core.config import get_settings
from marketpay.core.exceptions import BadRequestError
from marketpay.deps import get_order_machine, get_repositories
from marketpay.repositories.base import Repositories
from marketpay.services.orders import OrderStateMachine

router = APIRouter()


class CreateOrderRequest(BaseModel):
    total: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str | None = None
    buyer_id: str | None = None
    order_number: str | None = None


class StatusChangeRequest(BaseModel):
    status: str
    source: str = "admin"


@router.post("", status_code=201)
async def create_order(body: CreateOrderRequest, machine: OrderStateMachine = Depends(get_order_machine)):
    settlement = get_settings().settlement_currency.upper()
    currency = (body.currency or settlement).upper()
    if currency != settlement:
        raise BadRequestError(f"Only {settlement} orders are supported", details={"field": "currency"})
    order = await machine.create_order(body.total, currency, buyer_id=body.buyer_id, order_number=body.order_number)
    return order.public_dict()


@router.get("")
async def list_orders(
    buyer_id: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    repos: Repositories = Depends(get_repositories),
):
    orders = await repos.orders.list_orders(buyer_id=buyer_id, status=status, limit=limit, offset=offset)
    return {"items": [o.public_dict() for o in orders], "limit": limit, "offset": offset}


@router.get("/{order_number}")
async def get_order(order_number: str, machine: OrderStateMachine = Depends(get_order_machine)):
    return (await machine.get(order_number)).public_dict()


@router.get("/{order_number}/transactions")
async def list_transactions(
    order_number: str,
    machine: OrderStateMachine = Depends(get_order_machine),
    repos: Repositories = Depends(get_repositories),
):
    await machine.get(order_number)
    return {"items": [t.public_dict() for t in await repos.transactions.list_for_order(order_number)]}


@router.get("/{order_number}/events")
async def list_events(
    order_number: str,
    machine: OrderStateMachine = Depends(get_order_machine),
    repos: Repositories = Depends(get_repositories),
):
    await machine.get(order_number)
    return {"items": [e.public_dict() for e in await repos.events.list_for_order(order_number)]}


@router.post("/{order_number}/status")
async def change_status(
    order_number: str,
    body: StatusChangeRequest,
    machine: OrderStateMachine = Depends(get_order_machine),
):
    """Fulfilment transitions (shipped, delivered, cancelled). Payment status is not settable here."""
    order = await machine.transition(order_number, body.status, source=body.source)
    return order.public_dict()


@router.post("/{order_number}/refund")
async def mark_refunded(order_number: str, machine: OrderStateMachine = Depends(get_order_machine)):
    """Record a refund issued outside this service."""
    return (await machine.mark_refunded(order_number, source="admin")).public_dict()


@router.post("/{order_number}/payment-failed")
async def mark_payment_failed(order_number: str, machine: OrderStateMachine = Depends(get_order_machine)):
    return (await machine.mark_payment_failed(order_number, source="admin")).public_dict()
