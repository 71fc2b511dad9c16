"""Webhook signature verification.

The processor sends ``Stripe-Signature: t=<timestamp>,v1=<hex>[,v1=<hex>]``.
The signed payload is ``"<timestamp>." + raw_body`` under HMAC-SHA256 with
the shared webhook secret. All comparisons are constant-time.
"""

import hashlib
import hmac
import time

from django_entitlements.conf import get_setting
from django_entitlements.exceptions import ServiceUnavailable, SignatureInvalid

SIGNATURE_HEADER = 'HTTP_STRIPE_SIGNATURE'


def compute_signature(secret: str, timestamp: int, body: bytes) -> str:
    """Hex HMAC-SHA256 of ``"<timestamp>." + body``."""
    signed_payload = f'{timestamp}.'.encode('utf-8') + body
    return hmac.new(secret.encode('utf-8'), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(secret: str, body: bytes, timestamp: int | None = None) -> str:
    """Build a signature header value (used by tests and local tooling)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f't={timestamp},v1={compute_signature(secret, timestamp, body)}'


def _parse_header(header: str) -> tuple[str | None, list[str]]:
    timestamp = None
    signatures = []
    for item in header.split(','):
        key, sep, value = item.strip().partition('=')
        if not sep:
            continue
        if key == 't':
            timestamp = value
        elif key == 'v1':
            signatures.append(value)
    return timestamp, signatures


def verify_signature(body: bytes, header: str | None, secret: str | None = None,
                     tolerance: int | None = None, now: float | None = None) -> None:
    """Verify a webhook signature over the raw body.

    Args:
        body: Raw request body bytes
        header: Signature header value
        secret: Shared secret (defaults to ENTITLEMENTS_WEBHOOK_SECRET)
        tolerance: Max timestamp skew in seconds (defaults to setting)
        now: Current epoch seconds (for tests)

    Raises:
        ServiceUnavailable: If no secret is configured
        SignatureInvalid: If the header is missing, malformed, stale, or wrong
    """
    secret = secret if secret is not None else get_setting('WEBHOOK_SECRET')
    if not secret:
        raise ServiceUnavailable('Webhook not configured')
    if not header:
        raise SignatureInvalid('Missing signature')

    timestamp_str, signatures = _parse_header(header)
    if not timestamp_str or not signatures:
        raise SignatureInvalid('Malformed signature header')

    try:
        timestamp = int(timestamp_str)
    except ValueError:
        raise SignatureInvalid('Malformed signature timestamp')

    tolerance = tolerance if tolerance is not None else get_setting('SIGNATURE_TOLERANCE')
    now = time.time() if now is None else now
    if tolerance and abs(now - timestamp) > tolerance:
        raise SignatureInvalid('Signature timestamp outside tolerance')

    expected = compute_signature(secret, timestamp, body)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise SignatureInvalid()
