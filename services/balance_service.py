"""
Fiat Balance Service
The only code path that mutates users.balance_fiat, plus the ledger writer
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Transaction, TransactionStatus, TransactionType, User
from utils.exception_handler import BalanceUpdateError

logger = logging.getLogger(__name__)


async def get_user_fiat_balance(session: AsyncSession, user_id: str) -> Optional[Decimal]:
    """Current fiat balance, or None when the user does not exist"""
    result = await session.execute(select(User.balance_fiat).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        return None
    return Decimal(balance)


async def update_user_fiat_balance(
    session: AsyncSession, user_id: str, amount_change: Decimal
) -> Decimal:
    """Apply a signed change to a user's fiat balance in one conditional UPDATE.

    The row is only touched when the result stays non-negative, so two
    concurrent debits cannot overdraw the wallet. Raises BalanceUpdateError
    when no row qualifies.
    """
    amount_change = Decimal(amount_change)
    logger.info(
        f"💳 BALANCE_UPDATE: user {user_id} fiat balance: "
        f"{'+' if amount_change >= 0 else '-'}{abs(amount_change)} {Config.FIAT_CURRENCY}"
    )

    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .where(User.balance_fiat + amount_change >= 0)
        .values(balance_fiat=User.balance_fiat + amount_change)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.error(f"❌ BALANCE_UPDATE_FAILED: user {user_id} change {amount_change}")
        raise BalanceUpdateError(user_id, amount_change)

    new_balance = await get_user_fiat_balance(session, user_id)
    logger.info(f"✅ BALANCE_UPDATED: user {user_id} new fiat balance {new_balance}")
    return new_balance


async def record_transaction(
    session: AsyncSession,
    user_id: str,
    transaction_type: Union[TransactionType, str],
    amount: Decimal,
    description: str,
    payment_reference: Optional[str] = None,
    currency: Optional[str] = None,
    status: Union[TransactionStatus, str] = TransactionStatus.COMPLETED,
) -> Transaction:
    """Append one ledger entry"""
    entry = Transaction(
        user_id=user_id,
        type=getattr(transaction_type, "value", transaction_type),
        amount=Decimal(amount),
        currency=currency or Config.FIAT_CURRENCY,
        status=getattr(status, "value", status),
        description=description,
        payment_reference=payment_reference,
    )
    session.add(entry)
    await session.flush()
    return entry
