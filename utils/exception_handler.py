"""
Exception Handler Module
Custom exceptions for the payment flow, grouped the way callers handle them
"""

import logging
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Custom validation error for input validation failures"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PaymentProviderError(Exception):
    """PayHero call failed: transport error, non-2xx, empty or non-JSON body"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(message)


class ProviderCredentialsError(PaymentProviderError):
    """PayHero API username or password is not configured"""


class PaymentNotFoundError(Exception):
    """No payment request exists for a reference"""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Payment request not found: {reference}")


class InsufficientFundsError(ValidationError):
    """Withdrawal amount exceeds the available fiat balance"""

    def __init__(self, available: Decimal, currency: str):
        self.available = available
        self.currency = currency
        super().__init__(f"Insufficient funds. Available balance: {available} {currency}")


class BalanceUpdateError(Exception):
    """Atomic balance mutation affected no row (unknown user or negative result)"""

    def __init__(self, user_id: str, amount_change: Decimal):
        self.user_id = user_id
        self.amount_change = amount_change
        super().__init__(
            f"Failed to update fiat balance for user {user_id} by {amount_change}"
        )
