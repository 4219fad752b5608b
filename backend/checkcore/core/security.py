"""Manager PIN hashing and verification."""

from __future__ import annotations

import logging
from typing import Optional

import bcrypt

from checkcore.core.config import settings
from checkcore.core.errors import ValidationError

logger = logging.getLogger(__name__)

PIN_MIN_LENGTH = 4
PIN_MAX_LENGTH = 8


def is_valid_pin(pin: Optional[str]) -> bool:
    return bool(pin) and pin.isdigit() and PIN_MIN_LENGTH <= len(pin) <= PIN_MAX_LENGTH


def get_pin_hash(pin: str, rounds: Optional[int] = None) -> str:
    """Hash a numeric PIN with bcrypt. Rounds default to settings.bcrypt_rounds."""
    if not is_valid_pin(pin):
        raise ValidationError(f"PIN must be {PIN_MIN_LENGTH}-{PIN_MAX_LENGTH} digits")
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pin.encode("utf-8"), salt).decode("utf-8")


def verify_pin(plain_pin: Optional[str], hashed_pin: Optional[str]) -> bool:
    """Check a PIN against a stored hash. Malformed input never matches."""
    if not is_valid_pin(plain_pin) or not hashed_pin:
        return False
    try:
        return bcrypt.checkpw(plain_pin.encode("utf-8"), hashed_pin.encode("utf-8"))
    except ValueError as e:
        # Stored value is not a bcrypt hash
        logger.warning(f"PIN verification error: {e}")
        return False
