import hashlib

from marketpay.core.security import (
    constant_time_equals,
    ip_allowed,
    parse_stripe_signature_header,
    payfast_signature,
    stripe_signature_header,
    verify_hmac_sha256,
    verify_stripe_signature,
)


def test_stripe_header_parsing():
    assert parse_stripe_signature_header("t=12,v1=aa,v0=zz,v1=bb") == (12, ["aa", "bb"])
    assert parse_stripe_signature_header("t=abc,v1=aa") == (None, [])
    assert parse_stripe_signature_header("") == (None, [])


def test_stripe_signature_tolerance():
    body = b'{"id":"evt_1"}'
    header = stripe_signature_header(body, "whsec", timestamp=1000)
    assert verify_stripe_signature(body, header, "whsec", now=1000)
    assert verify_stripe_signature(body, header, "whsec", tolerance_seconds=300, now=1300)
    assert not verify_stripe_signature(body, header, "whsec", tolerance_seconds=300, now=1301)
    assert not verify_stripe_signature(body, header, "other", now=1000)
    assert not verify_stripe_signature(body, header, "", now=1000)


def test_hmac_requires_signature_and_secret():
    assert not verify_hmac_sha256(b"x", "", "secret")
    assert not verify_hmac_sha256(b"x", "abc", "")


def test_payfast_signature_matches_documented_encoding():
    fields = [("merchant_id", "10000100"), ("amount", "100.00"), ("item_name", "Order #1"), ("email_address", "")]
    expected = hashlib.md5(b"merchant_id=10000100&amount=100.00&item_name=Order+%231&passphrase=secret+phrase").hexdigest()
    assert payfast_signature(fields, "secret phrase") == expected

    with_blank = hashlib.md5(b"merchant_id=10000100&amount=100.00&item_name=Order+%231&email_address=").hexdigest()
    assert payfast_signature(fields, skip_blank=False) == with_blank


def test_payfast_signature_ignores_signature_field():
    fields = [("merchant_id", "1"), ("amount", "5.00")]
    assert payfast_signature(fields + [("signature", "abc")]) == payfast_signature(fields)


def test_constant_time_equals():
    assert constant_time_equals("abc", "abc")
    assert not constant_time_equals("abc", "abd")
    assert not constant_time_equals(None, "abc")
    assert not constant_time_equals("", "")


def test_ip_allowlist():
    assert ip_allowed("1.2.3.4", [])
    assert ip_allowed(None, [])
    assert ip_allowed("1.2.3.4", ["1.2.3.4"])
    assert not ip_allowed("5.6.7.8", ["1.2.3.4"])
    assert not ip_allowed(None, ["1.2.3.4"])
