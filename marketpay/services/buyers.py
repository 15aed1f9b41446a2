"""Buyer contact lookup used to complete checkout requests."""

from marketpay.gateways.types import PaymentRequest
from marketpay.repositories.base import BuyerDirectory

_CONTACT_FIELDS = {
    "customer_email": "email",
    "customer_name": "name",
    "customer_phone": "phone",
}


async def with_buyer_contact(directory: BuyerDirectory, request: PaymentRequest, buyer_id: str | None) -> PaymentRequest:
    """Fill missing email/name/phone from the buyer's profile. Fields the client sent win."""
    if not buyer_id:
        return request
    missing = [f for f in _CONTACT_FIELDS if request.is_missing(f)]
    if not missing:
        return request
    contact = await directory.get_contact(buyer_id)
    if not contact:
        return request
    updates = {f: getattr(contact, _CONTACT_FIELDS[f]) for f in missing if getattr(contact, _CONTACT_FIELDS[f])}
    return request.model_copy(update=updates) if updates else request
