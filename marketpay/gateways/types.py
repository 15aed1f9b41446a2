"""Normalized payment request, outcome and webhook shapes shared by every gateway."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentRequest(CamelModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    order_id: str = Field(min_length=1)
    customer_id: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    payment_method_id: str | None = None
    return_url: str | None = None
    cancel_url: str | None = None
    description: str | None = None
    item_name: str | None = None

    @classmethod
    def alias_for(cls, name: str) -> str:
        return cls.model_fields[name].alias or name

    def is_missing(self, name: str) -> bool:
        value = getattr(self, name)
        return value is None or (isinstance(value, str) and not value.strip())


class CompletedOutcome(CamelModel):
    status: Literal["completed"] = "completed"
    gateway: str
    reference: str
    transaction_id: str


class RedirectOutcome(CamelModel):
    status: Literal["redirect-required"] = "redirect-required"
    gateway: str
    reference: str
    redirect_url: str
    # Only for form-post gateways: fields the client must POST to redirect_url.
    form_fields: dict[str, str] | None = None


class FailedOutcome(CamelModel):
    status: Literal["failed"] = "failed"
    gateway: str
    reference: str
    reason_code: str
    message: str = ""
    transaction_id: str | None = None


PaymentOutcome = Annotated[
    Union[CompletedOutcome, RedirectOutcome, FailedOutcome],
    Field(discriminator="status"),
]

# Failed outcomes with these codes come from the provider side, not the buyer.
PROVIDER_FAILURE_CODES = frozenset({"provider_error", "provider_timeout", "provider_unreachable"})


@dataclass(frozen=True)
class WebhookDelivery:
    """One inbound callback exactly as received."""
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    client_ip: str | None = None

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class WebhookNotification:
    """Provider callback reduced to what the ingestor needs."""
    provider: str
    reference: str
    succeeded: bool
    event_type: str
    amount: Decimal | None = None
    currency: str | None = None
    order_hint: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
