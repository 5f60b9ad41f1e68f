"""
Payment Status Poller

Resolution order for a reference:
1. short-TTL status cache
2. stored payment request, returned as-is once terminal
3. live PayHero query, settling new terminal states when the callback
   never arrived

Provider failures degrade to the stored status with a shorter cache window.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from caching.simple_cache import SimpleCache
from config import Config
from database import async_managed_session
from models import PaymentRequest, PaymentStatus
from services.payhero_service import PayHeroService
from services.payment_settlement import get_payment_request, settle
from services.status_mapper import parse_payment_status
from utils.exception_handler import ValidationError
from utils.status_transitions import is_terminal

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _amount(value) -> Optional[float]:
    return float(Decimal(value)) if value is not None else None


def serialize_payment_request(payment_request: PaymentRequest) -> Dict[str, Any]:
    return {
        "success": True,
        "reference": payment_request.reference,
        "status": payment_request.status,
        "type": payment_request.type,
        "amount": _amount(payment_request.amount),
        "created_at": _iso(payment_request.created_at),
        "updated_at": _iso(payment_request.updated_at),
        "provider_reference": payment_request.provider_reference,
        "checkout_id": payment_request.checkout_request_id,
        "provider_data": payment_request.callback_data or payment_request.provider_data,
    }


class PaymentStatusPoller:
    """Answers client status polls for a payment reference"""

    def __init__(
        self,
        payhero_service: Optional[PayHeroService] = None,
        status_cache: Optional[SimpleCache] = None,
    ):
        self.payhero = payhero_service or PayHeroService()
        self.status_cache = status_cache or SimpleCache(
            default_ttl=Config.STATUS_CACHE_TTL_SECONDS, name="payment_status"
        )

    async def check_status(self, reference: Optional[str]) -> Dict[str, Any]:
        if not reference:
            raise ValidationError("Payment reference is required")

        logger.info(f"STATUS_CHECK: Checking status for transaction {reference}")

        cached = self.status_cache.get(reference)
        if cached is not None:
            logger.info("STATUS_CHECK: Returning cached status information")
            return {**cached, "cached": True}

        async with async_managed_session() as session:
            payment_request = await get_payment_request(session, reference)
            stored = serialize_payment_request(payment_request)

        if is_terminal(stored["status"]):
            logger.info(f"✅ STATUS_CHECK: Transaction {reference} has final status: {stored['status']}")
            self.status_cache.set(reference, stored, ttl=Config.STATUS_CACHE_TTL_SECONDS)
            return stored

        try:
            logger.info("STATUS_CHECK: Checking with PayHero for latest status")
            provider_status = await self.payhero.check_transaction_status(reference)
        except Exception as e:
            logger.error(f"❌ STATUS_CHECK: Provider query failed for {reference}: {e}")
            response = {
                **stored,
                "provider_data": None,
                "provider_error": str(e),
            }
            self.status_cache.set(reference, response, ttl=Config.STATUS_CACHE_ERROR_TTL_SECONDS)
            return response

        if not isinstance(provider_status, dict):
            provider_status = {"raw": provider_status}

        new_status = parse_payment_status(provider_status.get("status"))
        logger.info(f"STATUS_CHECK: PayHero reports status: {new_status.value}")

        if new_status.value != stored["status"] and is_terminal(new_status):
            response = await self._reconcile(reference, new_status, provider_status)
        else:
            logger.info(f"STATUS_CHECK: Status for {reference} remains: {stored['status']}")
            response = {
                **stored,
                "provider_status": new_status.value,
                "provider_data": provider_status,
            }

        self.status_cache.set(reference, response, ttl=Config.STATUS_CACHE_TTL_SECONDS)
        return response

    async def _reconcile(
        self,
        reference: str,
        new_status: PaymentStatus,
        provider_status: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Apply a terminal provider status the callback has not delivered"""
        provider_reference = (
            provider_status.get("provider_reference")
            or provider_status.get("third_party_reference")
            or ""
        )
        checkout_id = provider_status.get("CheckoutRequestID") or ""
        logger.info(f"STATUS_CHECK: Updating transaction {reference} with final status: {new_status.value}")

        async with async_managed_session() as session:
            outcome = await settle(
                session, reference, new_status,
                provider_reference=provider_reference,
                checkout_id=checkout_id,
                raw_payload=provider_status,
                source="status check",
            )
            # Re-read so a concurrent callback's result is what the client sees
            payment_request = await get_payment_request(session, reference)
            response = serialize_payment_request(payment_request)

        if outcome.applied:
            logger.info(f"✅ STATUS_CHECK: Successfully updated status for {reference}")
        response["provider_data"] = provider_status
        return response
