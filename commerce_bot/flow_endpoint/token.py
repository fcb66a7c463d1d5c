"""Flow tokens carry the initiating phone number through the stateless Flow exchange."""

import base64
import binascii
import logging
from typing import Optional

logger = logging.getLogger(__name__)

ONBOARDING_TOKEN_PREFIX = "onboarding_flow"


def encode_flow_token(phone_number: str) -> str:
    raw = f"{ONBOARDING_TOKEN_PREFIX}:{phone_number}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def phone_from_flow_token(flow_token: Optional[str]) -> Optional[str]:
    """Recover the phone number, or None for a missing or foreign token."""
    if not flow_token:
        return None
    try:
        decoded = base64.b64decode(flow_token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.error(f"Failed to extract phone number from flow_token: {type(e).__name__}")
        return None

    prefix, sep, phone_number = decoded.partition(":")
    if prefix != ONBOARDING_TOKEN_PREFIX or not sep or not phone_number or ":" in phone_number:
        return None
    return phone_number
