"""
Utility functions for the SMS assistant.
"""

import base64
import hmac
import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Mapping

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this clock."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_phone_number(phone: str) -> str:
    """
    Normalize a phone number to E.164.

    Ten-digit numbers are assumed to be US numbers (+1).
    """
    digits = re.sub(r"\D", "", phone or "")

    if len(digits) == 10 and not digits.startswith("1"):
        return f"+1{digits}"

    return f"+{digits}"


def compute_twilio_signature(url: str, params: Mapping[str, str], secret: str) -> str:
    """
    Compute a Twilio-style request signature.

    The signed payload is the full request URL followed by every POST
    parameter name and value, sorted by name.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(url: str, params: Mapping[str, str], signature: str, secret: str) -> bool:
    """
    Verify the X-Twilio-Signature header of a webhook request.

    Args:
        url: Full URL the provider posted to
        params: Decoded form parameters
        signature: Base64 signature from the X-Twilio-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying webhook signature for {url}")

    expected_signature = compute_twilio_signature(url, params, secret)

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"Webhook signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def verify_bearer_token(authorization: str | None, expected: str) -> bool:
    """Check an 'Authorization: Bearer <token>' header in constant time."""
    if not authorization or not authorization.startswith("Bearer "):
        return False

    token = authorization[len("Bearer "):]
    if not token:
        return False

    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))
