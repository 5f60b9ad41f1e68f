"""
Payment Service Database Schema
===============================

Tables owned by the mobile-money payment flow:
- users: fiat wallet balance (KES) plus a per-currency crypto balance map
- payment_requests: one row per STK push / B2C withdrawal, never deleted
- transactions: append-only ledger written once a payment settles
- orders: exchange orders (matching itself runs in the exchange engine)
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, ForeignKey, CheckConstraint, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class PaymentType(Enum):
    """Direction of a mobile-money payment"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class PaymentStatus(Enum):
    """Canonical payment request states"""
    PENDING = "pending"
    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


class TransactionType(Enum):
    """Ledger entry types written by the payment flow"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"


class TransactionStatus(Enum):
    """Ledger entry status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class OrderType(Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(Enum):
    """Exchange order lifecycle"""
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"


# ============================================================================
# MODELS
# ============================================================================

class User(Base):
    """Exchange user with fiat and crypto balances"""
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)

    balance_fiat = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    balance_crypto = Column(JSONType, nullable=True)  # {"BTC": "0.01", ...}

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    payment_requests = relationship("PaymentRequest", back_populates="user")
    transactions = relationship("Transaction", back_populates="user")

    __table_args__ = (
        CheckConstraint('balance_fiat >= 0', name='ck_user_balance_fiat_non_negative'),
    )


class PaymentRequest(Base):
    """Mobile-money deposit or withdrawal awaiting provider confirmation"""
    __tablename__ = 'payment_requests'

    id = Column(String(36), primary_key=True, default=_uuid)
    reference = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)

    type = Column(String(20), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    phone_number = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    # Provider correlation
    provider_reference = Column(String(100), nullable=True)  # M-Pesa receipt number
    checkout_request_id = Column(String(100), nullable=True)
    provider_data = Column(JSONType, nullable=True)  # Initiation response
    callback_data = Column(JSONType, nullable=True)  # Last terminal provider payload

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    user = relationship("User", back_populates="payment_requests")

    __table_args__ = (
        CheckConstraint(
            f"type IN ('{PaymentType.DEPOSIT.value}', '{PaymentType.WITHDRAWAL.value}')",
            name='ck_payment_request_type_valid'
        ),
        CheckConstraint(
            "status IN ('pending', 'queued', 'completed', 'failed', 'canceled')",
            name='ck_payment_request_status_valid'
        ),
        CheckConstraint('amount > 0', name='ck_payment_request_amount_positive'),
        Index('ix_payment_requests_user_status', 'user_id', 'status'),
    )


class Transaction(Base):
    """Financial transaction ledger (positive amount = credit)"""
    __tablename__ = 'transactions'

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    currency = Column(String(10), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    status = Column(String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    description = Column(Text, nullable=True)
    payment_reference = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index('ix_transactions_user_type', 'user_id', 'type'),
    )


class Order(Base):
    """Exchange order; fills are executed by the matching engine"""
    __tablename__ = 'orders'

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    currency = Column(String(10), nullable=False)
    amount = Column(Numeric(38, 18), nullable=False)
    filled = Column(Numeric(38, 18), nullable=False, default=Decimal("0"))
    price = Column(Numeric(18, 2), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.OPEN.value)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('buy', 'sell')", name='ck_order_type_valid'),
        CheckConstraint('filled >= 0 AND filled <= amount', name='ck_order_filled_range'),
        Index('ix_orders_status_currency', 'status', 'currency'),
    )
