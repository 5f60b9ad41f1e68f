"""
Status lifecycle guards

Statuses only move forward: once a payment or order reaches a terminal
value it never changes again.
"""

from typing import Union

from models import OrderStatus, PaymentStatus

TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
)
TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.CANCELLED})

# Order fills only grow; an open order may skip straight to filled
_ORDER_FORWARD = {
    OrderStatus.OPEN: {OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELLED},
    OrderStatus.PARTIALLY_FILLED: {OrderStatus.FILLED, OrderStatus.CANCELLED},
}


def _as_payment_status(status: Union[str, PaymentStatus]) -> PaymentStatus:
    return status if isinstance(status, PaymentStatus) else PaymentStatus(status)


def is_terminal(status: Union[str, PaymentStatus]) -> bool:
    return _as_payment_status(status) in TERMINAL_PAYMENT_STATUSES


def can_transition(current: Union[str, PaymentStatus], new: Union[str, PaymentStatus]) -> bool:
    """Whether a payment request may move from current to new"""
    current = _as_payment_status(current)
    new = _as_payment_status(new)
    if current == new or current in TERMINAL_PAYMENT_STATUSES:
        return False
    # queued means the provider accepted the request; do not fall back to pending
    if current == PaymentStatus.QUEUED and new == PaymentStatus.PENDING:
        return False
    return True


def can_transition_order(current: Union[str, OrderStatus], new: Union[str, OrderStatus]) -> bool:
    current = current if isinstance(current, OrderStatus) else OrderStatus(current)
    new = new if isinstance(new, OrderStatus) else OrderStatus(new)
    return new in _ORDER_FORWARD.get(current, set())
