"""
Provider Status Mapping
Maps PayHero / M-Pesa status strings onto the canonical payment statuses
"""

import logging
from typing import Any, Dict

from models import PaymentStatus

logger = logging.getLogger(__name__)


PAYHERO_TO_CANONICAL: Dict[str, PaymentStatus] = {
    "SUCCESS": PaymentStatus.COMPLETED,
    "QUEUED": PaymentStatus.QUEUED,
    "FAILED": PaymentStatus.FAILED,
    "PENDING": PaymentStatus.PENDING,
}

# Substrings that mean the customer or provider aborted the payment
_CANCEL_MARKERS = ("CANCEL", "REJECT")


def parse_payment_status(raw_status: Any) -> PaymentStatus:
    """Normalize a provider status; unknown values stay pending"""
    if raw_status is None:
        return PaymentStatus.PENDING

    normalized = str(raw_status).strip().upper()
    if not normalized:
        return PaymentStatus.PENDING

    mapped = PAYHERO_TO_CANONICAL.get(normalized)
    if mapped is not None:
        return mapped

    if any(marker in normalized for marker in _CANCEL_MARKERS):
        return PaymentStatus.CANCELED

    logger.debug(f"STATUS_MAPPER: Unrecognized provider status '{raw_status}' treated as pending")
    return PaymentStatus.PENDING
