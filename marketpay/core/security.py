import hashlib
import hmac
import time
from typing import Iterable
from urllib.parse import quote_plus


def hmac_sha256_hex(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_hmac_sha256(payload: bytes, signature: str, secret: str) -> bool:
    """Hex HMAC-SHA256 of the raw body (PayToday style)."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(hmac_sha256_hex(secret, payload), signature.strip())


def constant_time_equals(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def parse_stripe_signature_header(header: str) -> tuple[int | None, list[str]]:
    """Split "t=...,v1=...,v1=..." into (timestamp, [v1 signatures])."""
    timestamp: int | None = None
    signatures: list[str] = []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Stripe-Signature check: HMAC-SHA256 over "{t}.{body}" within the replay tolerance."""
    if not header or not secret:
        return False
    timestamp, signatures = parse_stripe_signature_header(header)
    if timestamp is None or not signatures:
        return False
    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance_seconds:
        return False
    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac_sha256_hex(secret, signed)
    return any(hmac.compare_digest(expected, s) for s in signatures)


def stripe_signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value; used by tests and local webhook replays."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    return f"t={timestamp},v1={hmac_sha256_hex(secret, signed)}"


def payfast_signature(fields: Iterable[tuple[str, str]], passphrase: str = "", skip_blank: bool = True) -> str:
    """MD5 over the url-encoded fields in submission order, plus passphrase.

    Checkout forms drop blank fields; ITN callbacks are signed over every field received.
    """
    parts = [
        f"{key}={quote_plus(str(value).strip())}"
        for key, value in fields
        if key != "signature" and value is not None and not (skip_blank and str(value).strip() == "")
    ]
    if passphrase:
        parts.append(f"passphrase={quote_plus(passphrase.strip())}")
    return hashlib.md5("&".join(parts).encode("utf-8")).hexdigest()


def ip_allowed(client_ip: str | None, allowlist: list[str]) -> bool:
    """Empty allowlist means the provider does not publish source addresses."""
    if not allowlist:
        return True
    return bool(client_ip) and client_ip in allowlist
