"""
Contracts between the vault engine and its external providers.

The engine never assumes a synchronous outcome: orders may stay pending and
payouts report final settlement later, by callback or by polling.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any


class OrderState(StrEnum):
    FILLED = "filled"
    PENDING = "pending"
    REJECTED = "rejected"


class PayoutState(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class OrderOutcome:
    """Broker answer for one order."""

    status: OrderState
    external_order_id: str | None = None
    filled_quantity: Decimal | None = None
    message: str | None = None


@dataclass
class PayoutReceipt:
    """Payout provider answer for one withdrawal."""

    reference: str
    status: PayoutState = PayoutState.PROCESSING
    message: str | None = None


def client_order_id(sweep_run_id: str, symbol: str) -> str:
    """Idempotency key sent with each sweep order leg."""
    return f"{sweep_run_id}-{symbol}"


class BrokerProvider(ABC):
    """Places notional buy orders into a user's brokerage account."""

    name: str = "broker"

    @abstractmethod
    def place_order(
        self,
        user_id: str,
        symbol: str,
        amount: Decimal,
        sweep_run_id: str,
    ) -> OrderOutcome:
        """Submit a buy order for ``amount`` of ``symbol``.

        Raises:
            ExternalProviderError: transport or server failure.
            ProviderTimeoutError: no answer within the configured timeout.
        """

    @abstractmethod
    def get_order(self, user_id: str, external_order_id: str) -> OrderOutcome:
        """Return the current state of a previously placed order."""

    @abstractmethod
    def find_order(self, user_id: str, client_order_id: str) -> OrderOutcome | None:
        """Look up an order by the client id it was placed with.

        Returns None when the broker never received it. Used to recover legs
        whose placement timed out before an order id came back.
        """


class PayoutProvider(ABC):
    """Moves withdrawn vault funds to a user's bank account."""

    name: str = "payout"

    @abstractmethod
    def initiate_payout(
        self,
        withdrawal_id: str,
        amount: Decimal,
        currency: str,
        destination_account: dict[str, Any],
    ) -> PayoutReceipt:
        """Start a payout and return the provider reference immediately."""

    @abstractmethod
    def get_payout(self, reference: str) -> PayoutReceipt:
        """Return the current state of a payout."""
