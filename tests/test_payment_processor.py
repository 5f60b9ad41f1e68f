"""
Payment initiation tests
Deposits, withdrawals with fund reservation, and compensation when the
provider call fails
"""

import re
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import fetch_balance, fetch_payment_request, fetch_transactions
from config import Config
from models import PaymentType
from services.payment_processor import (
    PaymentProcessor,
    generate_payment_reference,
    validate_amount,
    validate_payment_type,
)
from utils.exception_handler import (
    InsufficientFundsError,
    PaymentProviderError,
    ValidationError,
)


@pytest.fixture
def processor(payhero_mock):
    return PaymentProcessor(payhero_mock)


class TestValidation:

    @pytest.mark.parametrize("raw,expected", [
        (500, Decimal("500.00")),
        ("500", Decimal("500.00")),
        (10.55, Decimal("10.55")),
        ("0.01", Decimal("0.01")),
        ("250.500", Decimal("250.50")),
    ])
    def test_valid_amounts(self, raw, expected):
        assert validate_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, 0, -5, "abc", "", True, "NaN", "Infinity", "1E+40"])
    def test_invalid_amounts(self, raw):
        with pytest.raises(ValidationError, match="Amount must be a positive number"):
            validate_amount(raw)

    @pytest.mark.parametrize("raw", ["0.005", "500.005", "0.001", 10.555])
    def test_sub_cent_amounts_rejected_not_rounded(self, raw):
        with pytest.raises(ValidationError, match="at most 2 decimal places"):
            validate_amount(raw)

    def test_amount_below_minimum(self):
        with patch.object(Config, "MIN_PAYMENT_AMOUNT", Decimal("10.00")):
            with pytest.raises(ValidationError, match="Amount must be at least 10.00 KES"):
                validate_amount("9.99")
            assert validate_amount("10") == Decimal("10.00")

    @pytest.mark.parametrize("raw,expected", [
        ("deposit", PaymentType.DEPOSIT),
        ("WITHDRAWAL", PaymentType.WITHDRAWAL),
    ])
    def test_payment_types(self, raw, expected):
        assert validate_payment_type(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "refund"])
    def test_invalid_payment_type(self, raw):
        with pytest.raises(ValidationError):
            validate_payment_type(raw)

    def test_reference_format(self):
        assert re.fullmatch(r"DEP-\d{13}-[0-9a-f]{8}", generate_payment_reference(PaymentType.DEPOSIT))
        assert re.fullmatch(r"WIT-\d{13}-[0-9a-f]{8}", generate_payment_reference(PaymentType.WITHDRAWAL))

    def test_references_are_unique(self):
        references = {generate_payment_reference(PaymentType.DEPOSIT) for _ in range(500)}
        assert len(references) == 500


class TestDeposit:

    @pytest.mark.asyncio
    async def test_deposit_initiated(self, processor, payhero_mock, user_id):
        initiation = await processor.process_payment(user_id, 500, "0712345678", "deposit")

        assert initiation.reference.startswith("DEP-")
        assert initiation.to_dict()["message"] == "STK Push initiated successfully"
        assert initiation.to_dict()["status"] == "pending"

        amount, phone, reference, callback_url = payhero_mock.initiate_deposit.await_args.args
        assert amount == Decimal("500.00")
        assert phone == "254712345678"
        assert reference == initiation.reference
        assert callback_url.endswith(f"?action=callback&reference={initiation.reference}")

        stored = await fetch_payment_request(initiation.reference)
        assert stored.status == "pending"
        assert stored.type == "deposit"
        assert stored.phone_number == "254712345678"
        assert stored.provider_data == payhero_mock.initiate_deposit.return_value

        # Deposits credit only on confirmation
        assert await fetch_balance(user_id) == Decimal("1000.00")
        assert await fetch_transactions(user_id) == []

    @pytest.mark.asyncio
    async def test_deposit_initiation_failure_marks_failed(self, processor, payhero_mock, user_id):
        payhero_mock.initiate_deposit.side_effect = PaymentProviderError("Request failed: 500 - down")

        with pytest.raises(PaymentProviderError):
            await processor.process_payment(user_id, 500, "0712345678", "deposit")

        reference = payhero_mock.initiate_deposit.await_args.args[2]
        stored = await fetch_payment_request(reference)
        assert stored.status == "failed"
        assert stored.callback_data == {"initiation_error": "Request failed: 500 - down"}
        assert await fetch_balance(user_id) == Decimal("1000.00")
        assert await fetch_transactions(user_id) == []


class TestWithdrawal:

    @pytest.mark.asyncio
    async def test_withdrawal_reserves_funds(self, processor, payhero_mock, user_id):
        initiation = await processor.process_payment(user_id, "400", "712345678", "withdrawal")

        assert initiation.reference.startswith("WIT-")
        assert initiation.message == "Withdrawal initiated successfully"
        payhero_mock.initiate_withdrawal.assert_awaited_once()
        assert await fetch_balance(user_id) == Decimal("600.00")
        assert (await fetch_payment_request(initiation.reference)).status == "pending"

    @pytest.mark.asyncio
    async def test_full_balance_withdrawal_allowed(self, processor, user_id):
        await processor.process_payment(user_id, "1000", "0712345678", "withdrawal")
        assert await fetch_balance(user_id) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, processor, payhero_mock, user_id):
        with pytest.raises(InsufficientFundsError) as exc_info:
            await processor.process_payment(user_id, "1000.01", "0712345678", "withdrawal")

        assert str(exc_info.value) == "Insufficient funds. Available balance: 1000.00 KES"
        payhero_mock.initiate_withdrawal.assert_not_awaited()
        assert await fetch_balance(user_id) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_initiation_failure_refunds_exactly_once(self, processor, payhero_mock, user_id):
        payhero_mock.initiate_withdrawal.side_effect = PaymentProviderError("Network error: reset")

        with pytest.raises(PaymentProviderError, match="Network error"):
            await processor.process_payment(user_id, "400", "0712345678", "withdrawal")

        reference = payhero_mock.initiate_withdrawal.await_args.args[2]
        assert (await fetch_payment_request(reference)).status == "failed"
        assert await fetch_balance(user_id) == Decimal("1000.00")

        [refund] = await fetch_transactions(user_id)
        assert refund.type == "refund"
        assert Decimal(refund.amount) == Decimal("400.00")
        assert refund.payment_reference == reference
        assert "(initiation)" in refund.description


class TestRejectedRequests:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user,amount,phone,payment_type,message", [
        (None, 500, "0712345678", "deposit", "User not authenticated"),
        ("USER", 0, "0712345678", "deposit", "Amount must be a positive number"),
        ("USER", "abc", "0712345678", "deposit", "Amount must be a positive number"),
        ("USER", 500, "0712345678", "transfer", "Payment type"),
        ("USER", 500, "12345", "deposit", "Invalid phone number format"),
        ("USER", 500, None, "deposit", "Phone number is required"),
    ])
    async def test_invalid_input(self, processor, payhero_mock, user_id, user, amount, phone, payment_type, message):
        with pytest.raises(ValidationError, match=message):
            await processor.process_payment(
                user_id if user == "USER" else user, amount, phone, payment_type
            )
        payhero_mock.initiate_deposit.assert_not_awaited()
        payhero_mock.initiate_withdrawal.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_user(self, processor, payhero_mock, db):
        with pytest.raises(ValidationError, match="User not found"):
            await processor.process_payment("no-such-user", 500, "0712345678", "deposit")
        payhero_mock.initiate_deposit.assert_not_awaited()
