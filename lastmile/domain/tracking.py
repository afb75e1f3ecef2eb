"""Tracking codes: generated at booking, looked up case-insensitively."""

import secrets

from .errors import ValidationError

# No 0/O/1/I so codes survive being read out over the phone.
TRACKING_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_tracking_number(prefix: str = "LM", length: int = 10) -> str:
    body = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(length))
    return f"{prefix.upper()}{body}"


def normalize_tracking_number(raw: str | None) -> str:
    code = (raw or "").strip().upper()
    if not code:
        raise ValidationError("Tracking number is required")
    return code
