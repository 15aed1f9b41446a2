"""Adapter behaviour against a stub provider: validation, references, wire formats, webhook checks."""

import json
from decimal import Decimal
from urllib.parse import parse_qs, urlencode

import httpx
import pytest

from marketpay.core.config import HostedCardConfig, PayFastConfig
from marketpay.core.exceptions import (
    ConfigurationError,
    PaymentValidationError,
    ProviderError,
    UnknownGatewayError,
    WebhookAuthenticityError,
    WebhookPayloadError,
)
from marketpay.core.security import hmac_sha256_hex, payfast_signature, stripe_signature_header
from marketpay.gateways.hosted_card import HostedCardGateway
from marketpay.gateways.payfast import PayFastGateway
from marketpay.gateways.types import CompletedOutcome, FailedOutcome, PaymentRequest, RedirectOutcome, WebhookDelivery
from tests.conftest import FIXED_MILLIS, fixed_clock

pytestmark = pytest.mark.asyncio

COMPLETE_REQUEST = {
    "amount": "129.99",
    "orderId": "ORD-1",
    "customerId": "cus_1",
    "customerEmail": "ada@example.com",
    "customerName": "Ada Lovelace",
    "customerPhone": "+264811234567",
    "paymentMethodId": "pm_card_visa",
    "returnUrl": "https://shop.test/return",
    "cancelUrl": "https://shop.test/cancel",
}

MISSING_FIELD_CASES = [
    ("hosted_card", "payment_method_id", "paymentMethodId"),
    ("hosted_card", "customer_id", "customerId"),
    ("payfast", "return_url", "returnUrl"),
    ("payfast", "cancel_url", "cancelUrl"),
    ("paytoday", "customer_phone", "customerPhone"),
    ("dop", "return_url", "returnUrl"),
]


def _request(**overrides) -> PaymentRequest:
    data = PaymentRequest.model_validate(COMPLETE_REQUEST).model_dump()
    data.update(overrides)
    return PaymentRequest(**data)


@pytest.mark.parametrize("gateway_id,field,alias", MISSING_FIELD_CASES)
async def test_missing_field_fails_before_any_network_call(gateways, stub, gateway_id, field, alias):
    adapter = gateways.get(gateway_id)
    request = _request(**{field: None})
    with pytest.raises(PaymentValidationError) as exc:
        await adapter.process(request, adapter.new_reference("ORD-1"))
    assert exc.value.field == alias
    assert alias in exc.value.message
    assert stub.calls == 0


async def test_blank_string_counts_as_missing(gateways, stub):
    with pytest.raises(PaymentValidationError) as exc:
        await gateways.get("paytoday").process(_request(customer_phone="   "), "PT-ORD-1-1")
    assert exc.value.field == "customerPhone"
    assert stub.calls == 0


@pytest.mark.parametrize("gateway_id,prefix", [("hosted_card", "HC"), ("payfast", "PF"), ("paytoday", "PT"), ("dop", "DOP")])
@pytest.mark.parametrize("order_number", ["ORD-7", "ORD-ABC-123", "42"])
async def test_reference_roundtrip(gateways, gateway_id, prefix, order_number):
    adapter = gateways.get(gateway_id)
    reference = adapter.new_reference(order_number)
    assert reference == f"{prefix}-{order_number}-{FIXED_MILLIS}"
    assert adapter.parse_reference(reference) == order_number


async def test_parse_reference_rejects_foreign_or_malformed(gateways):
    paytoday = gateways.get("paytoday")
    assert paytoday.parse_reference("PT-ORD-7-1690000000000") == "ORD-7"
    assert paytoday.parse_reference("PF-ORD-7-1690000000000") is None
    assert paytoday.parse_reference("PT-ORD-7") is None
    assert paytoday.parse_reference("PT-ORD-7-1690000000") is None
    assert paytoday.parse_reference(1690000000000) is None
    assert paytoday.parse_reference("") is None
    assert paytoday.parse_reference(None) is None


async def test_unknown_gateway(gateways):
    with pytest.raises(UnknownGatewayError):
        gateways.get("paypal")
    assert gateways.get(" PayToday ").gateway_id == "paytoday"


async def test_missing_credentials_is_configuration_error(http):
    adapter = HostedCardGateway(HostedCardConfig(), http, clock=fixed_clock)
    with pytest.raises(ConfigurationError) as exc:
        adapter.ensure_configured()
    assert exc.value.details["missing"] == ["STRIPE_SECRET_KEY"]


# -- hosted card ---------------------------------------------------------


async def test_hosted_card_success_sends_minor_units_and_idempotency_key(gateways, stub):
    stub.on("POST", "/v1/payment_intents", json={"id": "pi_123", "status": "succeeded"})
    adapter = gateways.get("hosted_card")
    reference = adapter.new_reference("ORD-1")
    outcome = await adapter.process(_request(), reference)

    assert isinstance(outcome, CompletedOutcome)
    assert outcome.transaction_id == "pi_123"
    assert outcome.reference == reference
    sent = stub.requests[0]
    form = parse_qs(sent.content.decode())
    assert form["amount"] == ["12999"]
    assert form["currency"] == ["usd"]
    assert form["payment_method"] == ["pm_card_visa"]
    assert form["metadata[orderId]"] == ["ORD-1"]
    assert sent.headers["Idempotency-Key"] == reference
    assert sent.headers["Authorization"] == "Bearer sk_test_123"


async def test_hosted_card_three_d_secure_is_redirect(gateways, stub):
    stub.on(
        "POST",
        "/v1/payment_intents",
        json={
            "id": "pi_3ds",
            "status": "requires_action",
            "next_action": {"type": "redirect_to_url", "redirect_to_url": {"url": "https://hooks.stripe.test/3ds"}},
        },
    )
    outcome = await gateways.get("hosted_card").process(_request(), "HC-ORD-1-1")
    assert isinstance(outcome, RedirectOutcome)
    assert outcome.redirect_url == "https://hooks.stripe.test/3ds"


async def test_hosted_card_unsuccessful_intent_is_failed(gateways, stub):
    stub.on("POST", "/v1/payment_intents", json={"id": "pi_x", "status": "requires_payment_method"})
    outcome = await gateways.get("hosted_card").process(_request(), "HC-ORD-1-1")
    assert isinstance(outcome, FailedOutcome)
    assert outcome.reason_code == "payment_requires_payment_method"
    assert outcome.transaction_id == "pi_x"


async def test_hosted_card_decline_carries_decline_code(gateways, stub):
    stub.on(
        "POST",
        "/v1/payment_intents",
        status_code=402,
        json={"error": {"type": "card_error", "code": "card_declined", "decline_code": "insufficient_funds", "message": "Insufficient funds."}},
    )
    with pytest.raises(ProviderError) as exc:
        await gateways.get("hosted_card").process(_request(), "HC-ORD-1-1")
    assert exc.value.reason_code == "insufficient_funds"
    assert exc.value.provider_status == 402


@pytest.mark.parametrize("raises,reason", [(httpx.ReadTimeout, "provider_timeout"), (httpx.ConnectError, "provider_unreachable")])
async def test_transport_failures_map_to_reason_codes(gateways, stub, raises, reason):
    stub.on("POST", "/v1/payment_intents", raises=raises)
    with pytest.raises(ProviderError) as exc:
        await gateways.get("hosted_card").process(_request(), "HC-ORD-1-1")
    assert exc.value.reason_code == reason


async def test_provider_5xx_is_provider_error(gateways, stub):
    stub.on("POST", "/v1/payments", status_code=503, json={"message": "maintenance"})
    with pytest.raises(ProviderError) as exc:
        await gateways.get("paytoday").process(_request(), "PT-ORD-1-1")
    assert exc.value.reason_code == "provider_error"
    assert exc.value.provider_status == 503


async def test_create_intent_returns_client_secret(gateways, stub):
    stub.on("POST", "/v1/payment_intents", json={"id": "pi_9", "client_secret": "pi_9_secret_abc"})
    out = await gateways.hosted_card().create_intent(Decimal("10.00"), "USD", {"orderId": "ORD-9"})
    assert out == {"client_secret": "pi_9_secret_abc", "intent_id": "pi_9"}
    form = parse_qs(stub.requests[0].content.decode())
    assert form["amount"] == ["1000"]
    assert form["metadata[orderId]"] == ["ORD-9"]


def _stripe_event(event_type: str, amount: int = 12999) -> bytes:
    return json.dumps({
        "id": "evt_1",
        "type": event_type,
        "data": {"object": {"id": "pi_123", "amount_received": amount, "currency": "usd", "metadata": {"orderId": "ORD-1"}}},
    }).encode()


async def test_stripe_webhook_signature(gateways):
    adapter = gateways.get("hosted_card")
    body = _stripe_event("payment_intent.succeeded")
    header = stripe_signature_header(body, "whsec_test", timestamp=FIXED_MILLIS // 1000)
    delivery = WebhookDelivery(body=body, headers={"stripe-signature": header})
    adapter.verify_webhook(delivery)

    notification = adapter.parse_webhook(delivery)
    assert notification.reference == "pi_123"
    assert notification.succeeded is True
    assert notification.amount == Decimal("129.99")
    assert notification.currency == "USD"
    assert notification.order_hint == "ORD-1"


@pytest.mark.parametrize("header", [
    "",
    "t=1700000000,v1=deadbeef",
    stripe_signature_header(b"other body", "whsec_test", timestamp=FIXED_MILLIS // 1000),
    stripe_signature_header(_stripe_event("payment_intent.succeeded"), "whsec_test", timestamp=FIXED_MILLIS // 1000 - 3600),
])
async def test_stripe_webhook_rejected(gateways, header):
    delivery = WebhookDelivery(body=_stripe_event("payment_intent.succeeded"), headers={"Stripe-Signature": header})
    with pytest.raises(WebhookAuthenticityError):
        gateways.get("hosted_card").verify_webhook(delivery)


async def test_stripe_unrelated_event_is_ignored(gateways):
    delivery = WebhookDelivery(body=_stripe_event("customer.created"))
    assert gateways.get("hosted_card").parse_webhook(delivery) is None


# -- payfast -------------------------------------------------------------


async def test_payfast_form_post_without_network(gateways, stub, settings):
    adapter = gateways.get("payfast")
    reference = adapter.new_reference("ORD-1")
    outcome = await adapter.process(_request(), reference)

    assert isinstance(outcome, RedirectOutcome)
    assert outcome.redirect_url == settings.payfast_process_url
    fields = outcome.form_fields
    assert fields["m_payment_id"] == reference
    assert fields["amount"] == "129.99"
    assert fields["custom_str1"] == "ORD-1"
    assert fields["name_first"] == "Ada"
    assert fields["name_last"] == "Lovelace"
    assert fields["notify_url"] == "https://shop.test/v1/payments/webhook/payfast"
    unsigned = [(k, v) for k, v in fields.items() if k != "signature"]
    assert fields["signature"] == payfast_signature(unsigned, "jt7NOE43FZPn")
    assert stub.calls == 0


def _itn(amount: str = "129.99", **overrides) -> list[tuple[str, str]]:
    fields = [
        ("m_payment_id", "PF-ORD-1-1700000000000"),
        ("pf_payment_id", "1089250"),
        ("payment_status", "COMPLETE"),
        ("item_name", "Order #ORD-1"),
        ("item_description", ""),
        ("amount_gross", amount),
        ("amount_fee", "-2.99"),
        ("amount_net", "127.00"),
        ("custom_str1", "ORD-1"),
        ("merchant_id", "10000100"),
    ]
    fields = [(k, overrides.get(k, v)) for k, v in fields]
    return fields + [("signature", payfast_signature(fields, "jt7NOE43FZPn", skip_blank=False))]


async def test_payfast_itn_signature(gateways):
    adapter = gateways.get("payfast")
    delivery = WebhookDelivery(body=urlencode(_itn()).encode(), client_ip="197.97.145.144")
    adapter.verify_webhook(delivery)
    notification = adapter.parse_webhook(delivery)
    assert notification.reference == "PF-ORD-1-1700000000000"
    assert notification.succeeded is True
    assert notification.amount == Decimal("129.99")
    assert notification.order_hint == "ORD-1"


async def test_payfast_itn_tampered_amount_rejected(gateways):
    fields = _itn()
    tampered = [(k, "1.00" if k == "amount_gross" else v) for k, v in fields]
    with pytest.raises(WebhookAuthenticityError):
        gateways.get("payfast").verify_webhook(WebhookDelivery(body=urlencode(tampered).encode()))


async def test_payfast_itn_wrong_merchant_rejected(gateways):
    delivery = WebhookDelivery(body=urlencode(_itn(merchant_id="999")).encode())
    with pytest.raises(WebhookAuthenticityError):
        gateways.get("payfast").verify_webhook(delivery)


async def test_payfast_ip_allowlist(http):
    adapter = PayFastGateway(
        PayFastConfig(merchant_id="10000100", merchant_key="k", passphrase="jt7NOE43FZPn", allowed_ips=["197.97.145.144"]),
        http,
        clock=fixed_clock,
    )
    body = urlencode(_itn()).encode()
    adapter.verify_webhook(WebhookDelivery(body=body, client_ip="197.97.145.144"))
    with pytest.raises(WebhookAuthenticityError):
        adapter.verify_webhook(WebhookDelivery(body=body, client_ip="10.0.0.1"))


async def test_payfast_acknowledges_with_empty_body(gateways):
    response = gateways.get("payfast").acknowledge()
    assert response.status_code == 200
    assert response.body == b""


async def test_payfast_without_passphrase_rejects_every_itn(http):
    adapter = PayFastGateway(PayFastConfig(merchant_id="10000100", merchant_key="46f0cd694581a"), http, clock=fixed_clock)
    fields = [
        ("m_payment_id", "PF-ORD-1-1700000000000"),
        ("payment_status", "COMPLETE"),
        ("amount_gross", "129.99"),
        ("merchant_id", "10000100"),
    ]
    # Signed the way anyone can sign it when no passphrase is configured.
    fields.append(("signature", payfast_signature(fields, "", skip_blank=False)))

    with pytest.raises(WebhookAuthenticityError):
        adapter.verify_webhook(WebhookDelivery(body=urlencode(fields).encode(), client_ip="6.6.6.6"))
    with pytest.raises(ConfigurationError) as exc:
        adapter.ensure_configured()
    assert exc.value.details["missing"] == ["PAYFAST_PASSPHRASE"]
    assert adapter.describe()["configured"] is False


async def test_payfast_settings_ship_no_merchant_credentials():
    from marketpay.core.config import Settings

    assert Settings.model_fields["payfast_merchant_id"].default == ""
    assert Settings.model_fields["payfast_merchant_key"].default == ""
    assert Settings.model_fields["payfast_passphrase"].default == ""


def _validating_payfast(http) -> PayFastGateway:
    config = PayFastConfig(
        merchant_id="10000100",
        merchant_key="46f0cd694581a",
        passphrase="jt7NOE43FZPn",
        validate_url="https://payfast.test/eng/query/validate",
    )
    return PayFastGateway(config, http, clock=fixed_clock)


async def test_payfast_itn_confirmed_by_validate_postback(http, stub):
    stub.on("POST", "/eng/query/validate", text="VALID")
    adapter = _validating_payfast(http)
    delivery = WebhookDelivery(body=urlencode(_itn()).encode())
    adapter.verify_webhook(delivery)
    await adapter.confirm_webhook(delivery)

    assert stub.calls == 1
    posted = parse_qs(stub.requests[0].content.decode())
    assert posted["m_payment_id"] == ["PF-ORD-1-1700000000000"]
    assert posted["amount_gross"] == ["129.99"]
    assert "signature" not in posted


@pytest.mark.parametrize("route", [
    {"text": "INVALID"},
    {"status_code": 503, "text": "VALID"},
    {"raises": httpx.ConnectError},
])
async def test_payfast_itn_rejected_unless_postback_says_valid(http, stub, route):
    stub.on("POST", "/eng/query/validate", **route)
    with pytest.raises(WebhookAuthenticityError):
        await _validating_payfast(http).confirm_webhook(WebhookDelivery(body=urlencode(_itn()).encode()))


async def test_payfast_postback_skipped_without_validate_url(gateways, stub):
    await gateways.get("payfast").confirm_webhook(WebhookDelivery(body=urlencode(_itn()).encode()))
    assert stub.calls == 0


# -- paytoday / dop ------------------------------------------------------


async def test_paytoday_creates_payment_and_redirects(gateways, stub):
    stub.on("POST", "/v1/payments", json={"paymentUrl": "https://pay.paytoday.test/p/abc"})
    outcome = await gateways.get("paytoday").process(_request(), "PT-ORD-1-1700000000000")

    assert isinstance(outcome, RedirectOutcome)
    assert outcome.redirect_url == "https://pay.paytoday.test/p/abc"
    sent = json.loads(stub.requests[0].content)
    assert sent["reference"] == "PT-ORD-1-1700000000000"
    assert sent["amount"] == "129.99"
    assert sent["phoneNumber"] == "+264811234567"
    assert sent["callbackUrl"] == "https://shop.test/v1/payments/webhook/paytoday"
    assert stub.requests[0].headers["Authorization"] == "Bearer pt_key"


async def test_paytoday_response_without_url_is_provider_error(gateways, stub):
    stub.on("POST", "/v1/payments", json={"status": "created"})
    with pytest.raises(ProviderError):
        await gateways.get("paytoday").process(_request(), "PT-ORD-1-1")


async def test_paytoday_webhook_hmac(gateways):
    adapter = gateways.get("paytoday")
    body = json.dumps({"reference": "PT-ORD-7-1690000000000", "status": "successful"}).encode()
    adapter.verify_webhook(WebhookDelivery(body=body, headers={"X-PayToday-Signature": hmac_sha256_hex("pt_secret", body)}))
    with pytest.raises(WebhookAuthenticityError):
        adapter.verify_webhook(WebhookDelivery(body=body, headers={"X-PayToday-Signature": hmac_sha256_hex("wrong", body)}))
    with pytest.raises(WebhookAuthenticityError):
        adapter.verify_webhook(WebhookDelivery(body=body))


async def test_dop_creates_transaction_with_merchant_headers(gateways, stub):
    stub.on("POST", "/v1/transactions", json={"paymentUrl": "https://checkout.dop.test/t/1"})
    outcome = await gateways.get("dop").process(_request(), "DOP-ORD-1-1700000000000")
    assert isinstance(outcome, RedirectOutcome)
    sent = stub.requests[0]
    assert sent.headers["X-Merchant-Id"] == "dop-merchant"
    assert sent.headers["X-Api-Key"] == "dop_key"
    assert json.loads(sent.content)["metadata"]["orderId"] == "ORD-1"


async def test_dop_webhook_shared_secret(gateways):
    adapter = gateways.get("dop")
    payload = {
        "transaction_id": "DOP-ORD-1-1700000000000",
        "status": "completed",
        "merchant_id": "dop-merchant",
        "merchant_secret": "dop_secret",
        "amount": "129.99",
        "currency": "USD",
    }
    delivery = WebhookDelivery(body=json.dumps(payload).encode())
    adapter.verify_webhook(delivery)
    notification = adapter.parse_webhook(delivery)
    assert notification.succeeded is True
    assert "merchant_secret" not in notification.payload

    forged = WebhookDelivery(body=json.dumps({**payload, "merchant_secret": "guess"}).encode())
    with pytest.raises(WebhookAuthenticityError):
        adapter.verify_webhook(forged)


# -- malformed webhook fields --------------------------------------------


async def test_numeric_identifiers_are_read_as_text(gateways):
    paytoday = gateways.get("paytoday")
    notification = paytoday.parse_webhook(WebhookDelivery(
        body=json.dumps({"reference": 12345, "status": "successful", "metadata": {"orderId": 7}}).encode(),
    ))
    assert notification.reference == "12345"
    assert notification.order_hint == "7"

    dop = gateways.get("dop")
    notification = dop.parse_webhook(WebhookDelivery(body=json.dumps({"transaction_id": 987, "status": "completed"}).encode()))
    assert notification.reference == "987"
    assert notification.succeeded is True


@pytest.mark.parametrize("gateway_id, payload", [
    ("paytoday", {"reference": "PT-ORD-1-1700000000000", "status": "successful", "currency": 840}),
    ("paytoday", {"reference": ["PT-ORD-1-1700000000000"], "status": "successful"}),
    ("paytoday", {"reference": "PT-ORD-1-1700000000000", "status": True}),
    ("dop", {"transaction_id": {"id": 1}, "status": "completed"}),
    ("hosted_card", {"type": "payment_intent.succeeded", "data": {"object": "pi_123"}}),
    ("hosted_card", {"type": "payment_intent.succeeded", "data": []}),
    ("hosted_card", {"type": 7, "data": {"object": {"id": "pi_123"}}}),
    ("hosted_card", {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_123", "amount_received": "12999"}}}),
    ("hosted_card", {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_123", "currency": 840}}}),
])
async def test_malformed_webhook_fields_are_payload_errors(gateways, gateway_id, payload):
    with pytest.raises(WebhookPayloadError):
        gateways.get(gateway_id).parse_webhook(WebhookDelivery(body=json.dumps(payload).encode()))
