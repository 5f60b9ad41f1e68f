"""
Mobile number normalization for M-Pesa requests

Local Kenyan numbers are typed in many shapes ("0712 345 678",
"+254-712-345678", "712345678"); PayHero expects the bare 12-digit
international form ("254712345678").
"""

import logging
import re
from functools import lru_cache

from config import Config
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^0-9]")
NORMALIZED_LENGTH = 12


@lru_cache(maxsize=None)
def _normalize(raw: str, prefix: str) -> str:
    cleaned = _NON_DIGITS.sub("", raw)

    if len(cleaned) == 10 and cleaned.startswith("0"):
        logger.info(f"PHONE_FORMAT: Converting 0xx to {prefix}xx")
        cleaned = prefix + cleaned[1:]
    elif len(cleaned) == 9:
        logger.info(f"PHONE_FORMAT: Adding {prefix} prefix to 9-digit number")
        cleaned = prefix + cleaned

    if not cleaned.startswith(prefix) or len(cleaned) != NORMALIZED_LENGTH:
        logger.error(f"PHONE_FORMAT: Invalid phone format: {cleaned}")
        raise ValidationError(
            "Invalid phone number format. Must be a valid Kenyan phone number."
        )

    return cleaned


def normalize_phone_number(raw) -> str:
    """Return the 12-digit prefixed form of a user-typed phone number.

    Results are memoized per input for the life of the process; invalid
    inputs raise ValidationError every time.
    """
    if raw is None or not str(raw).strip():
        raise ValidationError("Phone number is required")
    return _normalize(str(raw), Config.PHONE_COUNTRY_PREFIX)


def clear_phone_cache() -> None:
    _normalize.cache_clear()
