"""Scheduled sweeps of the vault balance into brokerage orders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from app.config import settings
from app.providers.base import BrokerProvider, OrderOutcome, OrderState, client_order_id
from app.services.balance_service import BalanceService
from app.services.common import SupabaseService
from app.services.integrity_service import IntegrityService
from app.services.ledger_service import LedgerService, has_entry_type
from app.services.lock_service import LockService
from app.services.settings_service import PORTFOLIO_INSTRUMENTS, SettingsService, SweepSettings
from app.services.status import EntryType, OrderStatus, SettlementStatus, transition_row
from app.utils.errors import (
    AppError,
    ConcurrencyConflictError,
    ConflictError,
    DataIntegrityError,
    ExternalProviderError,
    ProviderTimeoutError,
)
from app.utils.money import ZERO, quantize_down, to_db, to_decimal
from app.utils.time import is_older_than, is_sweep_due, month_bounds, now_utc, utc_today
from supabase import Client

logger = logging.getLogger(__name__)

RUNS_TABLE = "sweep_runs"
ORDERS_TABLE = "orders"

IDLE = "idle"
SKIPPED = "skipped"
RUN_CREATED = "run-created"
EXISTING = "existing"


@dataclass
class SweepDecision:
    """Outcome of one scheduler evaluation for a user."""

    user_id: str
    state: str
    reason: str | None = None
    run: dict[str, Any] | None = None


def split_allocation(
    amount: Decimal,
    risk_profile: str,
    currency: str,
) -> list[tuple[str, Decimal]]:
    """Split ``amount`` across the model portfolio; the last leg takes the remainder."""
    instruments = PORTFOLIO_INSTRUMENTS.get(risk_profile) or PORTFOLIO_INSTRUMENTS["balanced"]
    legs: list[tuple[str, Decimal]] = []
    allocated = ZERO
    for index, (symbol, weight) in enumerate(instruments):
        if index == len(instruments) - 1:
            leg = amount - allocated
        else:
            leg = quantize_down(amount * weight, currency)
        allocated += leg
        if leg > ZERO:
            legs.append((symbol, leg))
    return legs


def committed_amount(runs: list[dict[str, Any]]) -> Decimal:
    """Sum what non-failed runs took or will take from the monthly cap."""
    total = ZERO
    for run in runs:
        if run["status"] == SettlementStatus.FAILED:
            continue
        if run["status"] == SettlementStatus.COMPLETED and run.get("invested_amount") is not None:
            total += to_decimal(run["invested_amount"])
        else:
            total += to_decimal(run["amount"])
    return total


def in_flight_sweep_amount(db: SupabaseService, user_id: str) -> Decimal:
    """Amount held by pending/processing runs that has not left the vault yet."""
    total = ZERO
    for status in (SettlementStatus.PENDING, SettlementStatus.PROCESSING):
        for run in db.select_many(RUNS_TABLE, filters={"user_id": user_id, "status": str(status)}):
            total += to_decimal(run["amount"])
    return total


class SweepService:
    """Evaluate sweep days, create runs, place orders and settle them."""

    def __init__(self, client: Client, broker: BrokerProvider) -> None:
        self.db = SupabaseService(client)
        self.broker = broker
        self.ledger = LedgerService(client)
        self.balances = BalanceService(client)
        self.settings = SettingsService(client)
        self.integrity = IntegrityService(client)
        self.locks = LockService(client)

    # Scheduling

    def evaluate(
        self,
        user_id: str,
        today: date | None = None,
        sweep_settings: SweepSettings | None = None,
    ) -> SweepDecision:
        """Decide whether to create a sweep run for ``today``.

        Retriggering on a day that already has a run returns that run.
        """
        today = today or utc_today()
        config = sweep_settings or self.settings.get(user_id)
        if not is_sweep_due(today, config.sweep_day):
            return SweepDecision(user_id, IDLE)

        with self.locks.hold(user_id, "sweep"):
            existing = self.db.select_first(
                RUNS_TABLE, {"user_id": user_id, "scheduled_for": today.isoformat()}
            )
            if existing is not None:
                return SweepDecision(user_id, EXISTING, run=existing)
            if not config.is_active:
                return self._skip(user_id, "inactive")
            if self.integrity.has_open_hold(user_id):
                return self._skip(user_id, "integrity_hold")

            balance = self.balances.verify(user_id)
            # Runs from earlier cycles still at the broker are not debited yet.
            sweepable = balance.balance - in_flight_sweep_amount(self.db, user_id)
            if sweepable < config.minimum_threshold:
                return self._skip(user_id, "below_threshold")

            committed = committed_amount(self._runs_in_month(user_id, today))
            cap_remaining = config.monthly_cap - committed
            currency = settings.default_currency
            amount = quantize_down(min(sweepable, cap_remaining), currency)
            if amount <= ZERO:
                return self._skip(user_id, "cap_exhausted")

            try:
                run = self.db.insert_one(
                    RUNS_TABLE,
                    {
                        "user_id": user_id,
                        "scheduled_for": today.isoformat(),
                        "scheduled_at": now_utc().isoformat(),
                        "amount": to_db(amount),
                        "invested_amount": None,
                        "currency": currency,
                        "status": str(SettlementStatus.PENDING),
                        "error_message": None,
                        "executed_at": None,
                        "created_at": now_utc().isoformat(),
                    },
                )
            except ConflictError:
                existing = self.db.select_first(
                    RUNS_TABLE, {"user_id": user_id, "scheduled_for": today.isoformat()}
                )
                if existing is None:
                    raise
                return SweepDecision(user_id, EXISTING, run=existing)

        logger.info(
            "Created sweep run %s for user %s: %s %s", run["id"], user_id, amount, currency
        )
        return SweepDecision(user_id, RUN_CREATED, run=run)

    def run_due_sweeps(self, today: date | None = None) -> dict[str, int]:
        """Evaluate every active user; one user's failure never stops the rest."""
        today = today or utc_today()
        summary = {"evaluated": 0, "created": 0, "skipped": 0, "errors": 0}
        for config in self.settings.list_active():
            summary["evaluated"] += 1
            try:
                decision = self.evaluate(config.user_id, today, sweep_settings=config)
                if decision.state == RUN_CREATED and decision.run is not None:
                    summary["created"] += 1
                    self.execute(decision.run)
                elif decision.state == SKIPPED:
                    summary["skipped"] += 1
            except DataIntegrityError:
                summary["errors"] += 1
            except ConcurrencyConflictError:
                logger.warning("Sweep for user %s skipped: lock contended", config.user_id)
                summary["errors"] += 1
            except AppError:
                logger.exception("Sweep evaluation failed for user %s", config.user_id)
                summary["errors"] += 1
        logger.info("Sweep cycle %s: %s", today.isoformat(), summary)
        return summary

    # Order placement

    def execute(self, run: dict[str, Any]) -> dict[str, Any]:
        """Place one order per model-portfolio leg and advance the run."""
        if run["status"] != SettlementStatus.PENDING:
            return run
        user_id = str(run["user_id"])
        config = self.settings.get(user_id)
        currency = run.get("currency") or settings.default_currency
        legs = split_allocation(to_decimal(run["amount"]), config.risk_profile, currency)

        results = [self._place_leg(run, symbol, amount, currency) for symbol, amount in legs]
        if all(order["status"] == OrderStatus.FAILED for order in results):
            errors = "; ".join(str(order.get("error_message")) for order in results)
            return self._transition(run, SettlementStatus.FAILED, error_message=errors or None)

        run = self._transition(run, SettlementStatus.PROCESSING)
        return self.finalize(run)

    def _place_leg(
        self,
        run: dict[str, Any],
        symbol: str,
        amount: Decimal,
        currency: str,
    ) -> dict[str, Any]:
        order = self.db.insert_one(
            ORDERS_TABLE,
            {
                "user_id": run["user_id"],
                "sweep_run_id": run["id"],
                "instrument_symbol": symbol,
                "instrument_name": symbol,
                "amount": to_db(amount),
                "currency": currency,
                "quantity": None,
                "status": str(OrderStatus.PENDING),
                "external_order_id": None,
                "error_message": None,
                "executed_at": None,
                "created_at": now_utc().isoformat(),
            },
        )
        try:
            outcome = self.broker.place_order(str(run["user_id"]), symbol, amount, str(run["id"]))
        except ProviderTimeoutError:
            logger.warning("Order %s for run %s timed out, left pending", symbol, run["id"])
            return order
        except ExternalProviderError as exc:
            logger.error("Order %s for run %s failed: %s", symbol, run["id"], exc.message)
            return self._update_order(
                order, {"status": str(OrderStatus.FAILED), "error_message": exc.message}
            )
        return self._apply_outcome(order, outcome)

    def _apply_outcome(self, order: dict[str, Any], outcome: OrderOutcome) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if outcome.external_order_id:
            payload["external_order_id"] = outcome.external_order_id
        if outcome.status == OrderState.FILLED:
            payload["status"] = str(OrderStatus.EXECUTED)
            payload["executed_at"] = now_utc().isoformat()
            if outcome.filled_quantity is not None:
                payload["quantity"] = to_db(outcome.filled_quantity)
        elif outcome.status == OrderState.REJECTED:
            payload["status"] = str(OrderStatus.FAILED)
            payload["error_message"] = outcome.message or "rejected"
        if not payload:
            return order
        return self._update_order(order, payload)

    def _update_order(self, order: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
        rows = self.db.update(ORDERS_TABLE, {"id": order["id"]}, payload)
        return rows[0] if rows else {**order, **payload}

    def _lookup_order(self, order: dict[str, Any]) -> OrderOutcome | None:
        # A leg whose placement timed out has no broker id; find it by client id.
        user_id = str(order["user_id"])
        if order.get("external_order_id"):
            return self.broker.get_order(user_id, str(order["external_order_id"]))
        return self.broker.find_order(
            user_id, client_order_id(str(order["sweep_run_id"]), str(order["instrument_symbol"]))
        )

    # Reconciliation

    def finalize(self, run: dict[str, Any]) -> dict[str, Any]:
        """Complete or fail a processing run once none of its orders are pending."""
        if run["status"] != SettlementStatus.PROCESSING:
            return run
        user_id = str(run["user_id"])
        with self.locks.hold(user_id, "sweep_finalize"):
            run = self.db.select_one(RUNS_TABLE, {"id": run["id"]}, not_found_label="Sweep run")
            if run["status"] != SettlementStatus.PROCESSING:
                return run
            orders = self.db.select_many(ORDERS_TABLE, filters={"sweep_run_id": run["id"]})
            if any(order["status"] == OrderStatus.PENDING for order in orders):
                return run

            invested = sum(
                (
                    to_decimal(order["amount"])
                    for order in orders
                    if order["status"] == OrderStatus.EXECUTED
                ),
                ZERO,
            )
            if invested <= ZERO:
                return self._transition(
                    run, SettlementStatus.FAILED, error_message="No order was executed"
                )

            entries = self.ledger.entries_for_sweep_run(str(run["id"]))
            if not has_entry_type(entries, EntryType.SWEEP_INVESTMENT):
                self.ledger.append(
                    user_id=user_id,
                    entry_type=EntryType.SWEEP_INVESTMENT,
                    amount=invested,
                    currency=run.get("currency") or settings.default_currency,
                    sweep_run_id=str(run["id"]),
                )
            return self._transition(
                run,
                SettlementStatus.COMPLETED,
                invested_amount=to_db(invested),
                executed_at=now_utc().isoformat(),
            )

    def sync_orders(self, user_id: str | None = None) -> dict[str, int]:
        """Poll pending orders and settle runs whose orders are all resolved."""
        summary = {"polled": 0, "expired": 0, "finalized": 0}
        sla = timedelta(minutes=settings.order_pending_sla_minutes)

        filters: dict[str, Any] = {"status": str(OrderStatus.PENDING)}
        if user_id:
            filters["user_id"] = user_id
        for order in self.db.select_many(ORDERS_TABLE, filters=filters):
            try:
                outcome = self._lookup_order(order)
            except ExternalProviderError as exc:
                logger.warning("Polling order %s failed: %s", order["id"], exc.message)
                continue
            if outcome is not None:
                self._apply_outcome(order, outcome)
                summary["polled"] += 1
            elif is_older_than(order["created_at"], sla):
                self._update_order(
                    order,
                    {
                        "status": str(OrderStatus.FAILED),
                        "error_message": "Broker has no record of the order",
                    },
                )
                summary["expired"] += 1

        run_filters: dict[str, Any] = {"status": str(SettlementStatus.PROCESSING)}
        if user_id:
            run_filters["user_id"] = user_id
        for run in self.db.select_many(RUNS_TABLE, filters=run_filters):
            finalized = self.finalize(run)
            if finalized["status"] != SettlementStatus.PROCESSING:
                summary["finalized"] += 1

        pending_filters: dict[str, Any] = {"status": str(SettlementStatus.PENDING)}
        if user_id:
            pending_filters["user_id"] = user_id
        for run in self.db.select_many(RUNS_TABLE, filters=pending_filters):
            if is_older_than(run["scheduled_at"], sla) and not self.db.select_many(
                ORDERS_TABLE, filters={"sweep_run_id": run["id"]}, limit=1
            ):
                self._transition(
                    run, SettlementStatus.FAILED, error_message="Run was never executed"
                )
                summary["finalized"] += 1

        logger.info("Order sync finished: %s", summary)
        return summary

    # Queries

    def list_runs(self, user_id: str, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        return self.db.select_many(
            RUNS_TABLE,
            filters={"user_id": user_id},
            order_by="scheduled_at",
            descending=True,
            limit=limit,
            offset=offset,
        )

    def in_flight_amount(self, user_id: str) -> Decimal:
        return in_flight_sweep_amount(self.db, user_id)

    def _runs_in_month(self, user_id: str, today: date) -> list[dict[str, Any]]:
        first, last = month_bounds(today)
        return self.db.execute(
            self.db.client.table(RUNS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .gte("scheduled_for", first.isoformat())
            .lte("scheduled_for", last.isoformat()),
            default=[],
        )

    def _transition(
        self,
        run: dict[str, Any],
        target: SettlementStatus,
        **fields: Any,
    ) -> dict[str, Any]:
        return transition_row(self.db, RUNS_TABLE, run, target, "Sweep run", **fields)

    @staticmethod
    def _skip(user_id: str, reason: str) -> SweepDecision:
        logger.info("Sweep skipped for user %s: %s", user_id, reason)
        return SweepDecision(user_id, SKIPPED, reason=reason)
