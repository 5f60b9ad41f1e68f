"""
Shared test fixtures for the payment service

Key components:
1. In-memory SQLite database (aiosqlite + StaticPool) with the full schema
2. User / payment request factories
3. PayHero service mocks - no test touches the network
"""

import os
import uuid

# Configure before config.py is imported anywhere
os.environ.setdefault("PAYHERO_API_USERNAME", "test-user")
os.environ.setdefault("PAYHERO_API_PASSWORD", "test-pass")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("API_URL", "https://api.example.test")

import logging
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

import database
from caching.simple_cache import SimpleCache
from models import PaymentRequest, PaymentStatus, Transaction, User
from services.payhero_service import PayHeroService
from utils.phone import clear_phone_cache

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory schema per test"""
    database.init_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await database.create_tables()
    yield database
    await database.dispose_engine()


@pytest_asyncio.fixture
async def make_user(db):
    async def _make_user(balance: str = "1000.00", user_id: Optional[str] = None) -> str:
        async with database.async_managed_session() as session:
            user = User(
                id=user_id or str(uuid.uuid4()),
                username="trader",
                email=f"trader-{os.urandom(4).hex()}@example.test",
                balance_fiat=Decimal(balance),
            )
            session.add(user)
            await session.flush()
            return user.id
    return _make_user


@pytest_asyncio.fixture
async def user_id(make_user):
    return await make_user("1000.00")


@pytest_asyncio.fixture
async def make_payment_request(db):
    async def _make(
        user_id: str,
        payment_type: str = "deposit",
        amount: str = "500.00",
        status: str = PaymentStatus.PENDING.value,
        reference: Optional[str] = None,
    ) -> str:
        reference = reference or f"{payment_type[:3].upper()}-TEST-{os.urandom(4).hex()}"
        async with database.async_managed_session() as session:
            session.add(PaymentRequest(
                reference=reference,
                user_id=user_id,
                type=payment_type,
                amount=Decimal(amount),
                phone_number="254712345678",
                status=status,
            ))
        return reference
    return _make


async def fetch_balance(user_id: str) -> Decimal:
    async with database.async_managed_session() as session:
        result = await session.execute(select(User.balance_fiat).where(User.id == user_id))
        return Decimal(result.scalar_one())


async def fetch_payment_request(reference: str) -> PaymentRequest:
    async with database.async_managed_session() as session:
        result = await session.execute(
            select(PaymentRequest).where(PaymentRequest.reference == reference)
        )
        return result.scalar_one()


async def fetch_transactions(user_id: str):
    async with database.async_managed_session() as session:
        result = await session.execute(
            select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.created_at)
        )
        return list(result.scalars())


@pytest.fixture
def status_cache():
    return SimpleCache(default_ttl=5, name="test_status")


@pytest.fixture
def payhero_mock():
    """PayHeroService stand-in with every network method mocked"""
    mock = AsyncMock(spec=PayHeroService)
    mock.initiate_deposit.return_value = {
        "success": True,
        "status": "QUEUED",
        "reference": "PH-REF-1",
        "CheckoutRequestID": "ws_CO_123",
    }
    mock.initiate_withdrawal.return_value = {
        "status": "QUEUED",
        "merchant_reference": "PH-WD-1",
    }
    mock.check_transaction_status.return_value = {"status": "PENDING"}
    return mock


@pytest.fixture(autouse=True)
def _reset_phone_cache():
    clear_phone_cache()
    yield
    clear_phone_cache()
