"""Vault balance derived by folding the ledger."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from app.services.integrity_service import IntegrityService
from app.services.ledger_service import LEDGER_TABLE, LedgerService, find_duplicate_roundups
from app.services.status import EntryType
from app.utils.errors import DataIntegrityError
from app.utils.money import ZERO, to_decimal
from app.utils.time import now_utc, parse_timestamp, start_of_month
from supabase import Client

NEGATIVE_BALANCE = "negative_balance"
DUPLICATE_ROUNDUP = "duplicate_roundup"


@dataclass(frozen=True)
class VaultBalance:
    """Result of a ledger fold.

    ``balance`` and ``this_month`` are floored at zero for display;
    ``raw_balance`` keeps the unclamped sum used for reconciliation.
    """

    balance: Decimal
    raw_balance: Decimal
    this_month: Decimal
    roundups_this_month: Decimal
    entry_count: int
    as_of: datetime

    @property
    def is_negative(self) -> bool:
        return self.raw_balance < ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "this_month": self.this_month,
            "entry_count": self.entry_count,
            "as_of": self.as_of,
        }


def signed_amount(entry: dict[str, Any]) -> Decimal:
    """Return the entry amount with the sign implied by ``is_reversal``."""
    amount = to_decimal(entry["amount"])
    return -amount if entry.get("is_reversal") else amount


def compute_balance(
    entries: Iterable[dict[str, Any]],
    as_of: datetime | None = None,
) -> VaultBalance:
    """Fold ledger entries created at or before ``as_of`` into a balance.

    Only sums are involved, so the result does not depend on iteration order.
    """
    cutoff = parse_timestamp(as_of) if as_of else now_utc()
    month_start = start_of_month(cutoff)

    raw = ZERO
    this_month = ZERO
    roundups = ZERO
    count = 0
    for entry in entries:
        created_at = parse_timestamp(entry["created_at"])
        if created_at > cutoff:
            continue
        amount = signed_amount(entry)
        raw += amount
        count += 1
        if created_at >= month_start:
            this_month += amount
            if entry.get("entry_type") in (EntryType.ROUNDUP, EntryType.ROUNDUP_CORRECTION):
                roundups += amount

    return VaultBalance(
        balance=max(ZERO, raw),
        raw_balance=raw,
        this_month=max(ZERO, this_month),
        roundups_this_month=roundups,
        entry_count=count,
        as_of=cutoff,
    )


class BalanceService:
    """Compute and verify vault balances from the ledger."""

    def __init__(self, client: Client) -> None:
        self.ledger = LedgerService(client)
        self.integrity = IntegrityService(client)

    def get_balance(self, user_id: str, as_of: datetime | None = None) -> VaultBalance:
        """Return the display balance, flagging a negative raw sum."""
        result = compute_balance(self.ledger.entries_for_user(user_id), as_of=as_of)
        if result.is_negative:
            self.integrity.flag(self._negative_error(user_id, result))
        return result

    def verify(self, user_id: str) -> VaultBalance:
        """Return the current balance or raise DataIntegrityError when negative."""
        result = compute_balance(self.ledger.entries_for_user(user_id))
        if result.is_negative:
            error = self._negative_error(user_id, result)
            self.integrity.flag(error)
            raise error
        return result

    def audit(self, user_id: str) -> list[DataIntegrityError]:
        """Scan a user's full ledger and flag every invariant violation found."""
        entries = self.ledger.entries_for_user(user_id)
        violations: list[DataIntegrityError] = []
        result = compute_balance(entries)
        if result.is_negative:
            violations.append(self._negative_error(user_id, result))
        duplicates = find_duplicate_roundups(entries)
        if duplicates:
            violations.append(
                DataIntegrityError(
                    user_id,
                    DUPLICATE_ROUNDUP,
                    f"transactions with duplicate round-ups: {', '.join(duplicates)}",
                )
            )
        for violation in violations:
            self.integrity.flag(violation)
        return violations

    def ledger_user_ids(self) -> list[str]:
        """Return every user id that has at least one ledger entry."""
        rows = self.ledger.db.select_many(LEDGER_TABLE, columns="user_id")
        return sorted({str(row["user_id"]) for row in rows})

    @staticmethod
    def _negative_error(user_id: str, result: VaultBalance) -> DataIntegrityError:
        return DataIntegrityError(
            user_id,
            NEGATIVE_BALANCE,
            f"raw ledger sum {result.raw_balance} over {result.entry_count} entries",
        )
