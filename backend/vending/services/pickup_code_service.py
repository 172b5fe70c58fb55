# Overview: Service-layer operations for pickup codes; issues and verifies redemption codes.

from __future__ import annotations

import hmac
import re
import secrets

from flask import current_app

from ..errors import ValidationError


# No 0/O, 1/I to keep codes readable on a machine keypad
PICKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PICKUP_CODE_MIN_LENGTH = 6
PICKUP_CODE_MAX_LENGTH = 10

_PICKUP_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6,10}$")


def issue_code(length: int | None = None) -> str:
    """
    Generate a pickup code.

    Characters are drawn with secrets.choice. Codes are scoped to one sale
    and are not checked for global uniqueness.
    """
    if length is None:
        length = current_app.config.get("PICKUP_CODE_LENGTH", 8)
    if not PICKUP_CODE_MIN_LENGTH <= length <= PICKUP_CODE_MAX_LENGTH:
        raise ValidationError(
            f"Pickup code length must be between {PICKUP_CODE_MIN_LENGTH} and {PICKUP_CODE_MAX_LENGTH}",
            details={"length": length},
        )
    return "".join(secrets.choice(PICKUP_CODE_ALPHABET) for _ in range(length))


def verify_code(sale, supplied) -> bool:
    """Exact, case-sensitive match against the sale's stored code."""
    if not sale.pickup_code or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(sale.pickup_code.encode(), supplied.encode())


def is_well_formed(code) -> bool:
    return isinstance(code, str) and bool(_PICKUP_CODE_PATTERN.match(code))
