"""
Payment Settlement - PayHero callback handling

Direct flow: Provider Confirmation → Status Update → Balance Mutation → Ledger Entry

A payment request settles at most once. The status update is conditional on
the stored request still being non-terminal, so a callback racing a status
poll for the same reference applies balance effects exactly once.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from caching.simple_cache import SimpleCache
from database import async_managed_session
from models import PaymentRequest, PaymentStatus, PaymentType, TransactionType
from services.balance_service import record_transaction, update_user_fiat_balance
from services.status_mapper import parse_payment_status
from utils.exception_handler import PaymentNotFoundError
from utils.status_transitions import TERMINAL_PAYMENT_STATUSES, can_transition, is_terminal

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [status.value for status in TERMINAL_PAYMENT_STATUSES]


@dataclass
class SettlementOutcome:
    """What a settle() call actually changed"""
    reference: str
    status: PaymentStatus
    applied: bool
    balance_change: Decimal = Decimal("0")
    transaction_types: List[str] = field(default_factory=list)


@dataclass
class CallbackResult:
    reference: str
    status: str
    already_processed: bool = False
    processed_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": True,
            "reference": self.reference,
            "status": self.status,
            "processed_at": self.processed_at,
        }
        if self.already_processed:
            body["message"] = "Payment already processed"
        return body


def extract_callback_fields(payload: Dict[str, Any]):
    """Pull status, provider reference and checkout id out of a PayHero callback"""
    response = payload.get("response") or {}
    raw_status = response.get("Status") or payload.get("status")
    provider_reference = (
        response.get("MpesaReceiptNumber")
        or response.get("TransactionID")
        or response.get("provider_reference")
        or ""
    )
    checkout_id = response.get("CheckoutRequestID") or ""
    return parse_payment_status(raw_status), provider_reference, checkout_id


async def get_payment_request(session: AsyncSession, reference: str) -> PaymentRequest:
    result = await session.execute(
        select(PaymentRequest)
        .where(PaymentRequest.reference == reference)
        .execution_options(populate_existing=True)
    )
    payment_request = result.scalar_one_or_none()
    if payment_request is None:
        raise PaymentNotFoundError(reference)
    return payment_request


async def settle(
    session: AsyncSession,
    reference: str,
    new_status: PaymentStatus,
    provider_reference: str = "",
    checkout_id: str = "",
    raw_payload: Optional[Dict[str, Any]] = None,
    source: str = "callback",
) -> SettlementOutcome:
    """Move a payment request to new_status and apply its balance effects.

    Only a request that is still non-terminal is updated; when the
    conditional update touches no row, nothing else happens.
    """
    payment_request = await get_payment_request(session, reference)
    current = PaymentStatus(payment_request.status)

    if not can_transition(current, new_status):
        logger.info(f"SETTLEMENT_SKIPPED: {reference} {current.value} -> {new_status.value} ({source})")
        return SettlementOutcome(reference, current, applied=False)

    values = {
        "status": new_status.value,
        "updated_at": datetime.now(timezone.utc),
    }
    if provider_reference:
        values["provider_reference"] = provider_reference
    if checkout_id:
        values["checkout_request_id"] = checkout_id
    if raw_payload is not None:
        values["callback_data"] = raw_payload

    result = await session.execute(
        update(PaymentRequest)
        .where(PaymentRequest.reference == reference)
        .where(PaymentRequest.status.notin_(_TERMINAL_VALUES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(f"SETTLEMENT_RACE_LOST: {reference} already settled by a concurrent request")
        return SettlementOutcome(reference, current, applied=False)

    outcome = SettlementOutcome(reference, new_status, applied=True)
    if not is_terminal(new_status):
        logger.info(f"SETTLEMENT_PROGRESS: {reference} now {new_status.value}")
        return outcome

    user_id = payment_request.user_id
    amount = Decimal(payment_request.amount)
    payment_type = PaymentType(payment_request.type)
    label = provider_reference or reference
    suffix = "" if source == "callback" else f" ({source})"

    if new_status == PaymentStatus.COMPLETED:
        if payment_type == PaymentType.DEPOSIT:
            await update_user_fiat_balance(session, user_id, amount)
            await record_transaction(
                session, user_id, TransactionType.DEPOSIT, amount,
                f"Deposit completed{suffix}: {label}", payment_reference=reference,
            )
            outcome.balance_change = amount
            outcome.transaction_types.append(TransactionType.DEPOSIT.value)
            logger.info(f"✅ DEPOSIT_CREDITED: {amount} credited to user {user_id} for {reference}")
        else:
            # Funds were reserved when the withdrawal was initiated
            await record_transaction(
                session, user_id, TransactionType.WITHDRAWAL, -amount,
                f"Withdrawal completed{suffix}: {label}", payment_reference=reference,
            )
            outcome.transaction_types.append(TransactionType.WITHDRAWAL.value)
            logger.info(f"✅ WITHDRAWAL_CONFIRMED: {amount} for user {user_id} ({reference})")
    elif payment_type == PaymentType.WITHDRAWAL:
        await update_user_fiat_balance(session, user_id, amount)
        await record_transaction(
            session, user_id, TransactionType.REFUND, amount,
            f"Withdrawal failed, amount refunded{suffix}: {reference}", payment_reference=reference,
        )
        outcome.balance_change = amount
        outcome.transaction_types.append(TransactionType.REFUND.value)
        logger.info(f"↩️ WITHDRAWAL_REFUNDED: {amount} to user {user_id} after {new_status.value} withdrawal")
    else:
        logger.info(f"DEPOSIT_NOT_COMPLETED: {reference} ended {new_status.value}, no balance change")

    return outcome


class PaymentSettlement:
    """Handles asynchronous PayHero callbacks"""

    def __init__(self, status_cache: Optional[SimpleCache] = None):
        self.status_cache = status_cache

    async def handle_callback(self, reference: str, payload: Dict[str, Any]) -> CallbackResult:
        """Process a provider callback; idempotent once the request is terminal"""
        logger.info(f"📥 CALLBACK_RECEIVED: Processing callback for reference: {reference}")
        new_status, provider_reference, checkout_id = extract_callback_fields(payload or {})

        async with async_managed_session() as session:
            payment_request = await get_payment_request(session, reference)

            if is_terminal(payment_request.status):
                logger.info(f"CALLBACK_DUPLICATE: Payment {reference} already {payment_request.status}, skipping")
                return CallbackResult(reference, payment_request.status, already_processed=True)

            logger.info(f"CALLBACK_STATUS: {reference} Status: {new_status.value}, Provider Ref: {provider_reference}")
            outcome = await settle(
                session, reference, new_status,
                provider_reference=provider_reference,
                checkout_id=checkout_id,
                raw_payload=payload,
            )

        if self.status_cache is not None:
            self.status_cache.delete(reference)

        logger.info(f"✅ CALLBACK_SETTLED: Successfully processed callback for {reference}")
        return CallbackResult(reference, outcome.status.value)
