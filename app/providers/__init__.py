"""Broker and payout provider adapters."""

from app.providers.base import (
    BrokerProvider,
    OrderOutcome,
    OrderState,
    PayoutProvider,
    PayoutReceipt,
    PayoutState,
)

__all__ = [
    "BrokerProvider",
    "OrderOutcome",
    "OrderState",
    "PayoutProvider",
    "PayoutReceipt",
    "PayoutState",
]
