"""Round-up computation: eligibility, rounding, monthly cap and idempotency."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from app.config import settings
from app.services.balance_service import DUPLICATE_ROUNDUP, BalanceService
from app.services.common import SupabaseService
from app.services.integrity_service import IntegrityService
from app.services.ledger_service import LedgerService, live_roundup_count
from app.services.lock_service import LockService
from app.services.settings_service import SettingsService
from app.services.status import EntryType
from app.utils.errors import DataIntegrityError
from app.utils.money import ZERO, ceil_to_whole, quantize, to_decimal
from app.utils.time import now_utc
from supabase import Client

logger = logging.getLogger(__name__)


def compute_roundup(amount: Decimal, currency: str | None) -> Decimal:
    """Return the distance from ``abs(amount)`` to the next whole currency unit."""
    value = quantize(abs(amount), currency)
    return quantize(ceil_to_whole(value) - value, currency)


def is_transaction_excluded(
    category: str | None,
    merchant_name: str | None,
    excluded_categories: Iterable[str],
    excluded_merchants: Iterable[str] = (),
) -> bool:
    """Return True when the category or merchant is on an exclusion list."""
    if category and category.strip().casefold() in {c.casefold() for c in excluded_categories}:
        return True
    if merchant_name and merchant_name.strip().casefold() in {
        m.strip().casefold() for m in excluded_merchants
    }:
        return True
    return False


def is_roundup_eligible(transaction: dict[str, Any]) -> bool:
    return bool(transaction.get("is_eligible_for_roundup")) and not bool(
        transaction.get("is_excluded")
    )


def apply_monthly_cap(roundup: Decimal, accrued: Decimal, monthly_cap: Decimal) -> Decimal:
    """Truncate ``roundup`` so month-to-date accrual never exceeds the cap."""
    remaining = max(ZERO, monthly_cap - accrued)
    return min(roundup, remaining)


class RoundUpService:
    """Turn ingested transactions into round-up ledger credits."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)
        self.ledger = LedgerService(client)
        self.balances = BalanceService(client)
        self.settings = SettingsService(client)
        self.integrity = IntegrityService(client)
        self.locks = LockService(client)

    def apply(self, transaction: dict[str, Any]) -> dict[str, Any] | None:
        """Create the round-up entry for a transaction if one is owed.

        Returns the new entry, or None when nothing was written (already
        rounded up, ineligible, whole amount, or cap exhausted).
        """
        transaction_id = str(transaction["id"])
        user_id = str(transaction["user_id"])

        # The live-entry check, the cap accrual and the append share one lease.
        with self.locks.hold(user_id, "roundup"):
            live = live_roundup_count(self.ledger.entries_for_transaction(transaction_id))
            if live > 1:
                error = DataIntegrityError(
                    user_id,
                    DUPLICATE_ROUNDUP,
                    f"{live} live round-up entries for transaction {transaction_id}",
                )
                self.integrity.flag(error)
                raise error
            if live == 1:
                self._mark_processed(transaction_id)
                return None

            entry = self._credit(transaction) if is_roundup_eligible(transaction) else None
            self._mark_processed(transaction_id)
        return entry

    def reverse(self, transaction: dict[str, Any]) -> dict[str, Any] | None:
        """Offset the live round-up of a transaction that became excluded.

        Money that already left the vault cannot be clawed back, so the
        correction is skipped when the balance no longer covers it.
        """
        transaction_id = str(transaction["id"])
        user_id = str(transaction["user_id"])

        with self.locks.hold(user_id, "roundup_correction"):
            entries = self.ledger.entries_for_transaction(transaction_id)
            if live_roundup_count(entries) != 1:
                return None
            amount = self.ledger.roundups_for_transactions([transaction_id])[transaction_id]
            balance = self.balances.verify(user_id)
            if balance.balance < amount:
                logger.warning(
                    "Skipping round-up correction for transaction %s: balance %s < %s",
                    transaction_id,
                    balance.balance,
                    amount,
                )
                return None
            entry = self.ledger.append(
                user_id=user_id,
                entry_type=EntryType.ROUNDUP_CORRECTION,
                amount=amount,
                currency=str(entries[0].get("currency") or settings.default_currency),
                transaction_id=transaction_id,
            )
        logger.info("Reversed round-up %s for transaction %s", amount, transaction_id)
        return entry

    def _credit(self, transaction: dict[str, Any]) -> dict[str, Any] | None:
        user_id = str(transaction["user_id"])
        currency = transaction.get("currency") or settings.default_currency
        roundup = compute_roundup(to_decimal(transaction["amount"]), currency)
        if roundup <= ZERO:
            return None

        cap = self.settings.get(user_id).monthly_cap
        accrued = self.balances.get_balance(user_id).roundups_this_month
        amount = apply_monthly_cap(roundup, accrued, cap)
        if amount <= ZERO:
            logger.info("Monthly cap %s reached for user %s", cap, user_id)
            return None
        if amount < roundup:
            logger.info(
                "Round-up for transaction %s truncated from %s to %s by monthly cap",
                transaction["id"],
                roundup,
                amount,
            )

        return self.ledger.append(
            user_id=user_id,
            entry_type=EntryType.ROUNDUP,
            amount=amount,
            currency=currency,
            transaction_id=str(transaction["id"]),
        )

    def _mark_processed(self, transaction_id: str) -> None:
        self.db.update(
            "transactions",
            {"id": transaction_id},
            {"roundup_processed_at": now_utc().isoformat()},
        )
