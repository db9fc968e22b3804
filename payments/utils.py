"""Signature checks, identifier sanitizing and small helpers for payments."""

import hashlib
import hmac
import logging
import random
import re
import string
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

ALNUM = string.ascii_uppercase + string.digits
MINOR_UNIT_MULTIPLIER = 100
# orders store money as DECIMAL(10, 2)
MAX_AMOUNT = Decimal("100000000")

_UUID_V4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """Check the checkout signature Razorpay hands to the client.

    The gateway signs ``"<order_id>|<payment_id>"`` with the key secret using
    HMAC-SHA256 and hex-encodes the digest. A mismatch returns ``False``; a
    missing secret is a deployment problem and raises
    :class:`ImproperlyConfigured` instead.
    """

    if not secret:
        logger.error("Razorpay key secret missing; cannot verify payment signature")
        raise ImproperlyConfigured("RAZORPAY_KEY_SECRET is required to verify payment signatures")

    msg = f"{order_id}|{payment_id}".encode("utf-8")
    expected = _hmac_sha256_hex(secret, msg)
    return hmac.compare_digest(expected, (signature or "").strip())


def verify_webhook_signature(raw_body: bytes, signature: str, webhook_secret: str, *, allow_unsigned: bool = False) -> bool:
    """Check ``X-Razorpay-Signature`` against the exact bytes received.

    Never pass a re-serialized body here: whitespace and key order must be the
    ones the gateway signed. Without a configured secret the check fails
    unless ``allow_unsigned`` is set.
    """

    if not webhook_secret:
        if allow_unsigned:
            logger.warning("Webhook secret not configured; accepting unsigned webhook")
            return True
        logger.error("Webhook secret not configured; rejecting webhook")
        return False

    if not signature:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    expected = _hmac_sha256_hex(webhook_secret, raw_body or b"")
    return hmac.compare_digest(expected, signature.strip())


def sanitize_uuid(value):
    """Return a lower-cased v4 UUID string, or ``None`` for anything else."""
    if not value or not isinstance(value, str):
        return None

    trimmed = value.strip()
    if _UUID_V4_RE.match(trimmed):
        return trimmed.lower()
    if not trimmed:
        return None
    if trimmed.isdigit():
        logger.warning("Invalid UUID format detected (numeric): %r", trimmed)
    else:
        logger.warning("Invalid UUID format: %r", trimmed)
    return None


def sanitize_uuid_fields(data: dict, field_names) -> dict:
    sanitized = dict(data)
    for name in field_names:
        if name in sanitized:
            original = sanitized[name]
            sanitized[name] = sanitize_uuid(original)
            if sanitized[name] is None and original is not None:
                logger.warning("Invalid UUID for field %s: %r; setting to null", name, original)
    return sanitized


def parse_amount(value) -> Decimal:
    """Money from a JSON body as a finite Decimal that fits the stored precision.

    Booleans, non-numeric strings, ``inf``/``nan`` and out-of-range values
    raise ``ValueError``.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValueError(f"Not a number: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")
    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        raise ValueError(f"Amount out of range: {value!r}")
    return amount


def to_minor_units(amount) -> int:
    q = (parse_amount(amount) * MINOR_UNIT_MULTIPLIER).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(q)


def decimal_string(value):
    """Exact decimal string for a money value; floats go through ``str`` first."""
    if value is None or value == "":
        return None
    return format(parse_amount(value), "f")


def from_unix_timestamp(value):
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def generate_receipt(prefix="RCPT"):
    ts = datetime.now(timezone.utc).strftime("%m%d%H%M%S")
    rand = "".join(random.choices(ALNUM, k=6))
    # Razorpay caps receipts at 40 chars
    return f"{prefix}{ts}{rand}"[:40]
