"""
Payment Processor - deposit and withdrawal initiation

Deposits: persist request → STK push.
Withdrawals: persist request + reserve funds atomically → B2C payout; a
payout that cannot be initiated is refunded through the settlement path, so
the reservation is compensated exactly once.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import update

from config import Config
from database import async_managed_session
from models import PaymentRequest, PaymentStatus, PaymentType
from services.balance_service import get_user_fiat_balance, update_user_fiat_balance
from services.payhero_service import PayHeroService
from services.payment_settlement import settle
from utils.exception_handler import InsufficientFundsError, ValidationError
from utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

_REFERENCE_PREFIX = {
    PaymentType.DEPOSIT: "DEP",
    PaymentType.WITHDRAWAL: "WIT",
}


@dataclass
class PaymentInitiation:
    reference: str
    payment_type: PaymentType
    provider_data: Any
    status: str = PaymentStatus.PENDING.value

    @property
    def message(self) -> str:
        action = "STK Push" if self.payment_type == PaymentType.DEPOSIT else "Withdrawal"
        return f"{action} initiated successfully"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "reference": self.reference,
            "status": self.status,
            "message": self.message,
            "provider_data": self.provider_data,
        }


def generate_payment_reference(payment_type: PaymentType) -> str:
    """Unique, provider-correlatable reference such as DEP-1718000000000-9f3a1c2b"""
    return f"{_REFERENCE_PREFIX[payment_type]}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def validate_amount(raw_amount) -> Decimal:
    if raw_amount is None or isinstance(raw_amount, bool):
        raise ValidationError("Amount must be a positive number")
    try:
        amount = Decimal(str(raw_amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number")

    try:
        cents = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValidationError("Amount must be a positive number")
    # Whole cents only; the requested amount is never rounded
    if cents != amount:
        raise ValidationError("Amount must have at most 2 decimal places")

    amount = cents
    if amount < Config.MIN_PAYMENT_AMOUNT:
        raise ValidationError(f"Amount must be at least {Config.MIN_PAYMENT_AMOUNT} {Config.FIAT_CURRENCY}")
    return amount


def validate_payment_type(raw_type) -> PaymentType:
    try:
        return PaymentType(str(raw_type).strip().lower())
    except ValueError:
        raise ValidationError("Payment type must be 'deposit' or 'withdrawal'")


class PaymentProcessor:
    """Validates and initiates PayHero deposits and withdrawals"""

    def __init__(self, payhero_service: Optional[PayHeroService] = None):
        self.payhero = payhero_service or PayHeroService()

    async def process_payment(
        self,
        user_id: Optional[str],
        amount,
        phone_number: Optional[str],
        payment_type,
    ) -> PaymentInitiation:
        logger.info("PROCESS_PAYMENT: Processing payment request")

        if not user_id:
            raise ValidationError("User not authenticated")
        amount = validate_amount(amount)
        payment_type = validate_payment_type(payment_type)
        formatted_phone = normalize_phone_number(phone_number)
        logger.info(f"PROCESS_PAYMENT: Input validation passed, formatted phone: {formatted_phone}")

        reference = generate_payment_reference(payment_type)

        async with async_managed_session() as session:
            balance = await get_user_fiat_balance(session, user_id)
            if balance is None:
                raise ValidationError("User not found")

            if payment_type == PaymentType.WITHDRAWAL and balance < amount:
                raise InsufficientFundsError(balance, Config.FIAT_CURRENCY)

            session.add(PaymentRequest(
                reference=reference,
                user_id=user_id,
                type=payment_type.value,
                amount=amount,
                phone_number=formatted_phone,
                status=PaymentStatus.PENDING.value,
            ))
            await session.flush()

            if payment_type == PaymentType.WITHDRAWAL:
                # Reserve now so a concurrent withdrawal cannot spend the same funds
                await update_user_fiat_balance(session, user_id, -amount)
                logger.info(f"PROCESS_PAYMENT: Reserved {amount} {Config.FIAT_CURRENCY} for withdrawal {reference}")

        callback_url = Config.payment_callback_url(reference)
        logger.info(f"PROCESS_PAYMENT: Initiating {payment_type.value} for {amount} to {formatted_phone}")

        try:
            if payment_type == PaymentType.DEPOSIT:
                provider_data = await self.payhero.initiate_deposit(
                    amount, formatted_phone, reference, callback_url
                )
            else:
                provider_data = await self.payhero.initiate_withdrawal(
                    amount, formatted_phone, reference, callback_url
                )
        except Exception as e:
            logger.error(f"❌ PROCESS_PAYMENT: {payment_type.value} initiation failed for {reference}: {e}")
            try:
                await self._fail_initiation(reference, str(e))
            except Exception as compensation_error:
                logger.critical(
                    f"🚨 PROCESS_PAYMENT: Could not close failed request {reference}: {compensation_error}"
                )
            raise

        async with async_managed_session() as session:
            await session.execute(
                update(PaymentRequest)
                .where(PaymentRequest.reference == reference)
                .values(provider_data=provider_data)
                .execution_options(synchronize_session=False)
            )

        logger.info(f"✅ PROCESS_PAYMENT: Payment request successful with reference: {reference}")
        return PaymentInitiation(reference, payment_type, provider_data)

    async def _fail_initiation(self, reference: str, error: str) -> None:
        """Close a request whose provider call never went through.

        Withdrawals get their reservation refunded with one compensating
        ledger entry; deposits are only marked failed.
        """
        async with async_managed_session() as session:
            outcome = await settle(
                session, reference, PaymentStatus.FAILED,
                raw_payload={"initiation_error": error},
                source="initiation",
            )
        if outcome.balance_change:
            logger.info(f"↩️ PROCESS_PAYMENT: Refunded {outcome.balance_change} {Config.FIAT_CURRENCY} after withdrawal initiation failure")
