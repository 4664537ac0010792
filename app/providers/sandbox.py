"""In-process providers for development and tests."""

from __future__ import annotations

import logging
import threading
import uuid
from decimal import Decimal
from typing import Any

from app.providers.base import (
    BrokerProvider,
    OrderOutcome,
    OrderState,
    PayoutProvider,
    PayoutReceipt,
    PayoutState,
    client_order_id,
)
from app.utils.errors import ExternalProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

# Notional price used to derive a filled quantity.
SANDBOX_UNIT_PRICE = Decimal("100")


class SandboxBroker(BrokerProvider):
    """Broker that answers every order with a configurable outcome."""

    name = "sandbox-broker"

    def __init__(
        self,
        outcome: OrderState = OrderState.FILLED,
        rejected_symbols: set[str] | None = None,
        failing_symbols: set[str] | None = None,
        timeout_symbols: set[str] | None = None,
        lost_symbols: set[str] | None = None,
    ) -> None:
        self.outcome = outcome
        self.rejected_symbols = rejected_symbols or set()
        self.failing_symbols = failing_symbols or set()
        self.timeout_symbols = timeout_symbols or set()
        self.lost_symbols = lost_symbols or set()
        self.orders: dict[str, OrderOutcome] = {}
        self.by_client_id: dict[str, str] = {}
        self.placed: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def place_order(
        self,
        user_id: str,
        symbol: str,
        amount: Decimal,
        sweep_run_id: str,
    ) -> OrderOutcome:
        # Lost orders never reach the broker; timed-out ones do but the answer is dropped.
        if symbol in self.lost_symbols:
            raise ProviderTimeoutError(self.name)
        if symbol in self.failing_symbols:
            raise ExternalProviderError(self.name, f"order for {symbol} failed")

        if symbol in self.timeout_symbols:
            status = OrderState.PENDING
        elif symbol in self.rejected_symbols:
            status = OrderState.REJECTED
        else:
            status = self.outcome
        outcome = OrderOutcome(
            status=status,
            external_order_id=f"sbx-{uuid.uuid4().hex[:12]}",
            filled_quantity=(amount / SANDBOX_UNIT_PRICE) if status == OrderState.FILLED else None,
            message="rejected by sandbox" if status == OrderState.REJECTED else None,
        )
        with self._lock:
            self.orders[outcome.external_order_id] = outcome
            self.by_client_id[client_order_id(sweep_run_id, symbol)] = outcome.external_order_id
            self.placed.append(
                {
                    "user_id": user_id,
                    "symbol": symbol,
                    "amount": amount,
                    "sweep_run_id": sweep_run_id,
                    "external_order_id": outcome.external_order_id,
                }
            )
        logger.info("Sandbox order %s %s %s -> %s", symbol, amount, sweep_run_id, status)
        if symbol in self.timeout_symbols:
            raise ProviderTimeoutError(self.name)
        return outcome

    def get_order(self, user_id: str, external_order_id: str) -> OrderOutcome:
        with self._lock:
            outcome = self.orders.get(external_order_id)
        if outcome is None:
            raise ExternalProviderError(self.name, f"unknown order {external_order_id}")
        return outcome

    def find_order(self, user_id: str, client_order_id: str) -> OrderOutcome | None:
        with self._lock:
            external_order_id = self.by_client_id.get(client_order_id)
            return self.orders.get(external_order_id) if external_order_id else None

    def fill(self, external_order_id: str, quantity: Decimal | None = None) -> None:
        """Mark a pending sandbox order as filled."""
        with self._lock:
            outcome = self.orders[external_order_id]
            outcome.status = OrderState.FILLED
            outcome.filled_quantity = quantity


class SandboxPayout(PayoutProvider):
    """Payout provider that accepts every payout and settles on demand."""

    name = "sandbox-payout"

    def __init__(self, fail: bool = False, timeout: bool = False) -> None:
        self.fail = fail
        self.timeout = timeout
        self.payouts: dict[str, PayoutReceipt] = {}
        self._lock = threading.Lock()

    def initiate_payout(
        self,
        withdrawal_id: str,
        amount: Decimal,
        currency: str,
        destination_account: dict[str, Any],
    ) -> PayoutReceipt:
        if self.timeout:
            raise ProviderTimeoutError(self.name)
        if self.fail:
            raise ExternalProviderError(self.name, "payout rejected")

        receipt = PayoutReceipt(reference=f"PO-{uuid.uuid4().hex[:10].upper()}")
        with self._lock:
            self.payouts[receipt.reference] = receipt
        logger.info(
            "Sandbox payout %s for withdrawal %s: %s %s",
            receipt.reference,
            withdrawal_id,
            amount,
            currency,
        )
        return receipt

    def get_payout(self, reference: str) -> PayoutReceipt:
        with self._lock:
            receipt = self.payouts.get(reference)
        if receipt is None:
            raise ExternalProviderError(self.name, f"unknown payout {reference}")
        return receipt

    def settle(self, reference: str, status: PayoutState) -> None:
        with self._lock:
            self.payouts[reference].status = status
