"""Withdrawal settlement: reserve now, compensate on failure."""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from app.config import settings
from app.providers.base import PayoutProvider, PayoutState
from app.services.balance_service import BalanceService
from app.services.common import SupabaseService
from app.services.ledger_service import LedgerService, has_entry_type
from app.services.lock_service import LockService
from app.services.status import (
    EntryType,
    SettlementStatus,
    is_terminal,
    transition_row,
)
from app.services.sweep_service import in_flight_sweep_amount
from app.utils.errors import (
    ConcurrencyConflictError,
    ConflictError,
    ExternalProviderError,
    InsufficientFundsError,
    ProviderTimeoutError,
    ValidationError,
)
from app.utils.money import ZERO, has_sub_minor_precision, to_db, to_decimal
from app.utils.time import now_utc
from supabase import Client

logger = logging.getLogger(__name__)

WITHDRAWALS_TABLE = "withdrawals"


def generate_reference_number() -> str:
    """Return a human-readable withdrawal reference like ``WD-1700000000000-A1B2C3``."""
    return f"WD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class WithdrawalService:
    """Reserve, dispatch and reconcile vault withdrawals."""

    def __init__(self, client: Client, payout: PayoutProvider) -> None:
        self.db = SupabaseService(client)
        self.payout = payout
        self.ledger = LedgerService(client)
        self.balances = BalanceService(client)
        self.locks = LockService(client)

    def initiate(
        self,
        user_id: str,
        amount: Decimal,
        destination_account_id: str,
    ) -> dict[str, Any]:
        """Reserve the amount and hand the payout to the provider."""
        withdrawal = self.reserve(user_id, amount, destination_account_id)
        return self.dispatch(withdrawal)

    def reserve(
        self,
        user_id: str,
        amount: Decimal,
        destination_account_id: str,
    ) -> dict[str, Any]:
        """Create a pending withdrawal and its reversal entry as one unit.

        Raises:
            ValidationError: bad amount or unknown destination account.
            InsufficientFundsError: amount exceeds the available balance.
            ConcurrencyConflictError: another reservation holds the user lock.
        """
        if amount <= ZERO:
            raise ValidationError("Withdrawal amount must be positive")
        account = self.db.select_first(
            "bank_accounts", {"id": destination_account_id, "user_id": user_id}
        )
        if account is None:
            raise ValidationError("Destination account not found")
        currency = account.get("currency") or settings.default_currency
        if has_sub_minor_precision(amount, currency):
            raise ValidationError(f"Withdrawal amount has too many decimals for {currency}")

        with self.locks.hold(user_id, "withdrawal"):
            balance = self.balances.verify(user_id)
            available = balance.balance - in_flight_sweep_amount(self.db, user_id)
            if amount > available:
                raise InsufficientFundsError(requested=amount, available=max(ZERO, available))

            # The withdrawal row and its reservation entry commit together.
            rows = self.db.execute(
                self.db.client.rpc(
                    "reserve_withdrawal",
                    {
                        "p_user_id": user_id,
                        "p_amount": to_db(amount),
                        "p_currency": currency,
                        "p_destination_account_id": destination_account_id,
                        "p_reference_number": generate_reference_number(),
                    },
                ),
                default=[],
            )
            if not rows:
                raise ValidationError("Withdrawal reservation failed")
            withdrawal = rows[0]

        logger.info(
            "Reserved withdrawal %s for user %s: %s %s",
            withdrawal["reference_number"],
            user_id,
            amount,
            currency,
        )
        return withdrawal

    def dispatch(self, withdrawal: dict[str, Any]) -> dict[str, Any]:
        """Send a pending withdrawal to the payout provider."""
        if withdrawal["status"] != SettlementStatus.PENDING:
            return withdrawal
        account = self.db.select_first(
            "bank_accounts", {"id": withdrawal["destination_account_id"]}
        ) or {"id": withdrawal["destination_account_id"]}

        try:
            receipt = self.payout.initiate_payout(
                str(withdrawal["id"]),
                to_decimal(withdrawal["amount"]),
                str(withdrawal["currency"]),
                account,
            )
        except ProviderTimeoutError:
            logger.warning(
                "Payout for withdrawal %s timed out, left pending for reconciliation",
                withdrawal["id"],
            )
            return withdrawal
        except ExternalProviderError as exc:
            logger.error("Payout for withdrawal %s failed: %s", withdrawal["id"], exc.message)
            return self._fail(withdrawal, exc.message)

        withdrawal = transition_row(
            self.db,
            WITHDRAWALS_TABLE,
            withdrawal,
            SettlementStatus.PROCESSING,
            "Withdrawal",
            provider_reference=receipt.reference,
        )
        if receipt.status == PayoutState.COMPLETED:
            return self._complete(withdrawal)
        if receipt.status == PayoutState.FAILED:
            return self._fail(withdrawal, receipt.message or "Payout failed")
        return withdrawal

    def settle(
        self,
        withdrawal_id: str,
        succeeded: bool,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Apply the provider's final answer; repeated identical answers are no-ops."""
        withdrawal = self.get(withdrawal_id)
        target = SettlementStatus.COMPLETED if succeeded else SettlementStatus.FAILED
        if is_terminal(withdrawal["status"]) and withdrawal["status"] != target:
            raise ConflictError(
                f"Withdrawal already {withdrawal['status']}", code="ALREADY_SETTLED"
            )
        if succeeded:
            return self._complete(withdrawal)
        return self._fail(withdrawal, reason or "Payout failed")

    def expire_stale(self, now: datetime | None = None) -> dict[str, int]:
        """Resolve withdrawals still open past the settlement SLA."""
        now = now or now_utc()
        cutoff = now - timedelta(hours=settings.withdrawal_settlement_sla_hours)
        stale = self.db.execute(
            self.db.client.table(WITHDRAWALS_TABLE)
            .select("*")
            .in_("status", [str(SettlementStatus.PENDING), str(SettlementStatus.PROCESSING)])
            .lte("initiated_at", cutoff.isoformat()),
            default=[],
        )

        summary = {"completed": 0, "failed": 0}
        for withdrawal in stale:
            state = self._poll(withdrawal)
            try:
                if state == PayoutState.COMPLETED:
                    result = self._complete(withdrawal)
                else:
                    result = self._fail(withdrawal, "Settlement timed out")
                summary[str(result["status"])] += 1
            except (ConflictError, ConcurrencyConflictError) as exc:
                # Settled by a callback in the meantime; the next run re-checks.
                logger.warning("Skipping stale withdrawal %s: %s", withdrawal["id"], exc.message)
        if stale:
            logger.warning("Expired %s stale withdrawals: %s", len(stale), summary)
        return summary

    def get(self, withdrawal_id: str, user_id: str | None = None) -> dict[str, Any]:
        filters = {"id": withdrawal_id}
        if user_id:
            filters["user_id"] = user_id
        return self.db.select_one(WITHDRAWALS_TABLE, filters, not_found_label="Withdrawal")

    def list_withdrawals(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        return self.db.select_many(
            WITHDRAWALS_TABLE,
            filters={"user_id": user_id},
            order_by="initiated_at",
            descending=True,
            limit=limit,
            offset=offset,
        )

    def _poll(self, withdrawal: dict[str, Any]) -> PayoutState | None:
        reference = withdrawal.get("provider_reference")
        if not reference:
            return None
        try:
            return self.payout.get_payout(str(reference)).status
        except ExternalProviderError as exc:
            logger.warning("Polling payout %s failed: %s", reference, exc.message)
            return None

    def _complete(self, withdrawal: dict[str, Any]) -> dict[str, Any]:
        user_id = str(withdrawal["user_id"])
        with self.locks.hold(user_id, "withdrawal_settlement"):
            withdrawal = self.get(str(withdrawal["id"]))
            if withdrawal["status"] == SettlementStatus.COMPLETED:
                return withdrawal
            if withdrawal["status"] == SettlementStatus.FAILED:
                raise ConflictError("Withdrawal already failed", code="ALREADY_SETTLED")
            if withdrawal["status"] == SettlementStatus.PENDING:
                withdrawal = transition_row(
                    self.db,
                    WITHDRAWALS_TABLE,
                    withdrawal,
                    SettlementStatus.PROCESSING,
                    "Withdrawal",
                )
            return transition_row(
                self.db,
                WITHDRAWALS_TABLE,
                withdrawal,
                SettlementStatus.COMPLETED,
                "Withdrawal",
                completed_at=now_utc().isoformat(),
            )

    def _fail(self, withdrawal: dict[str, Any], reason: str) -> dict[str, Any]:
        """Fail the withdrawal and restore the reserved amount exactly once.

        The status write happens before the compensation entry, so a
        withdrawal that completed in the meantime is never refunded. A failed
        withdrawal missing its compensation is repaired on the next call.
        """
        user_id = str(withdrawal["user_id"])
        with self.locks.hold(user_id, "withdrawal_settlement"):
            withdrawal = self.get(str(withdrawal["id"]))
            if withdrawal["status"] == SettlementStatus.COMPLETED:
                return withdrawal
            if withdrawal["status"] != SettlementStatus.FAILED:
                withdrawal = transition_row(
                    self.db,
                    WITHDRAWALS_TABLE,
                    withdrawal,
                    SettlementStatus.FAILED,
                    "Withdrawal",
                    failure_reason=reason,
                )
            entries = self.ledger.entries_for_withdrawal(str(withdrawal["id"]))
            if has_entry_type(entries, EntryType.WITHDRAWAL_RESERVATION) and not has_entry_type(
                entries, EntryType.WITHDRAWAL_COMPENSATION
            ):
                self.ledger.append(
                    user_id=user_id,
                    entry_type=EntryType.WITHDRAWAL_COMPENSATION,
                    amount=to_decimal(withdrawal["amount"]),
                    currency=str(withdrawal["currency"]),
                    withdrawal_id=str(withdrawal["id"]),
                )
            return withdrawal
