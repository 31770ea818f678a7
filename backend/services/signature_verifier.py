"""
Webhook signature verification.

Both providers sign the raw, undecoded request body. Verification must run
before the body is parsed or recorded anywhere.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import math
import re
import time
from typing import Any

import stripe

from core.errors import InvalidPayload, SignatureError

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

# Secret prefixes whose remainder is a base64-encoded signing key
_BASE64_SECRET_PREFIXES = ("whsec_", "base64:")

_HEADER_SEPARATORS = re.compile(r"[;,]")


def _parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    """Split `ts=<unix>;h1=<hex>[;h1=<hex>...]` into a timestamp and candidate signatures."""
    timestamp = None
    candidates = []
    for part in _HEADER_SEPARATORS.split(header):
        key, sep, value = part.strip().partition("=")
        if not sep or not value.strip():
            continue
        key = key.strip()
        if key == "ts":
            timestamp = value.strip()
        elif key == "h1":
            candidates.append(value.strip())
    return timestamp, candidates


def _signing_key(secret: str) -> bytes | None:
    """Derive the HMAC key from a configured secret; None if it cannot be decoded."""
    for prefix in _BASE64_SECRET_PREFIXES:
        if secret.startswith(prefix):
            try:
                return base64.b64decode(secret[len(prefix):], validate=True)
            except (binascii.Error, ValueError):
                return None
    return secret.encode("utf-8")


def _hex_equal(candidate: str, expected: str) -> bool:
    try:
        return hmac.compare_digest(bytes.fromhex(candidate), bytes.fromhex(expected))
    except ValueError:
        return False


def verify_paddle_signature(
    raw_body: bytes,
    header: str | None,
    secret: str | None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """
    Verify a Paddle Billing `paddle-signature` header.

    The signed payload is `"{ts}:{raw_body}"`, HMAC-SHA256 with the
    notification secret, hex encoded. Any candidate `h1` may match.
    Never raises: malformed headers, non-finite timestamps, undecodable
    secrets and stale timestamps all return False.

    Args:
        raw_body: Request body exactly as received
        header: Value of the paddle-signature header
        secret: Notification destination secret
        tolerance: Maximum allowed |now - ts| in seconds
        now: Current unix time (defaults to time.time())

    Returns:
        True if at least one candidate signature matches inside the window
    """
    if not header or not secret:
        return False

    timestamp, candidates = _parse_signature_header(header)
    if not timestamp or not candidates:
        return False

    try:
        ts = float(timestamp)
    except ValueError:
        return False
    if not math.isfinite(ts):
        return False

    current = time.time() if now is None else now
    if abs(current - ts) > tolerance:
        logger.warning("Paddle signature timestamp outside the %ss window", tolerance)
        return False

    key = _signing_key(secret)
    if key is None:
        return False

    try:
        body = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        return False

    expected = hmac.new(key, f"{timestamp}:{body}".encode("utf-8"), hashlib.sha256).hexdigest()
    return any(_hex_equal(candidate, expected) for candidate in candidates)


def construct_stripe_event(
    raw_body: bytes,
    header: str | None,
    secret: str | None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> dict[str, Any]:
    """
    Verify a `stripe-signature` header and return the event as a plain dict.

    Raises:
        SignatureError: With code missing_signature when the header or secret
            is absent, invalid_signature when verification fails
        InvalidPayload: If the verified body is not a JSON event
    """
    if not header or not secret:
        raise SignatureError("Missing Stripe signature", code="missing_signature")

    try:
        stripe.Webhook.construct_event(raw_body, header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning("Invalid Stripe signature: %s", e)
        raise SignatureError("Invalid signature") from e
    except (ValueError, AttributeError, TypeError) as e:
        # AttributeError/TypeError: signed JSON that is not an object
        logger.warning("Unparseable Stripe webhook payload: %s", e)
        raise InvalidPayload("Invalid webhook payload") from e

    event = json.loads(raw_body)
    if not isinstance(event, dict):
        raise InvalidPayload("Invalid webhook payload")
    return event


def parse_paddle_event(
    raw_body: bytes,
    header: str | None,
    secret: str | None,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
) -> dict[str, Any]:
    """
    Verify a `paddle-signature` header and return the decoded event.

    Raises:
        SignatureError: With code missing_signature when the header or secret
            is absent, invalid_signature when verification fails
        InvalidPayload: If the verified body is not a JSON event
    """
    if not header or not secret:
        raise SignatureError("Missing Paddle signature", code="missing_signature")

    if not verify_paddle_signature(raw_body, header, secret, tolerance=tolerance):
        raise SignatureError("Invalid signature")

    try:
        event = json.loads(raw_body)
    except ValueError as e:
        raise InvalidPayload("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise InvalidPayload("Invalid webhook payload")
    return event
