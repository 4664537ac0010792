"""Append-only round-up ledger."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from app.services.common import SupabaseService
from app.services.status import EntryType
from app.utils.errors import ValidationError
from app.utils.money import ZERO, to_db, to_decimal
from app.utils.time import now_utc
from supabase import Client

LEDGER_TABLE = "roundup_ledger"

REVERSAL_TYPES = frozenset(
    {
        EntryType.ROUNDUP_CORRECTION,
        EntryType.SWEEP_INVESTMENT,
        EntryType.WITHDRAWAL_RESERVATION,
    }
)


class LedgerService:
    """Insert and query ledger entries. Entries are never updated or deleted."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def append(
        self,
        user_id: str,
        entry_type: EntryType,
        amount: Decimal,
        currency: str,
        transaction_id: str | None = None,
        withdrawal_id: str | None = None,
        sweep_run_id: str | None = None,
    ) -> dict[str, Any]:
        """Append one entry; the reversal flag follows from ``entry_type``."""
        if amount <= ZERO:
            raise ValidationError("Ledger entry amount must be positive")
        references = [ref for ref in (transaction_id, withdrawal_id, sweep_run_id) if ref]
        if len(references) > 1:
            raise ValidationError("Ledger entry may reference at most one origin")

        payload = {
            "user_id": user_id,
            "entry_type": str(entry_type),
            "amount": to_db(amount),
            "currency": currency,
            "is_reversal": entry_type in REVERSAL_TYPES,
            "transaction_id": transaction_id,
            "withdrawal_id": withdrawal_id,
            "sweep_run_id": sweep_run_id,
            "created_at": now_utc().isoformat(),
        }
        return self.db.insert_one(LEDGER_TABLE, payload)

    def entries_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """Return every entry of a user; the full scan backs balance folds."""
        return self.db.select_many(LEDGER_TABLE, filters={"user_id": user_id})

    def list_entries(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """Return ledger entries with total count for pagination."""
        rows = self.db.select_many(
            LEDGER_TABLE,
            filters={"user_id": user_id},
            order_by="created_at",
            descending=True,
            limit=limit,
            offset=offset,
        )
        total = self.db.count(LEDGER_TABLE, {"user_id": user_id})
        return rows, total

    def entries_for_transaction(self, transaction_id: str) -> list[dict[str, Any]]:
        return self.db.select_many(LEDGER_TABLE, filters={"transaction_id": transaction_id})

    def entries_for_withdrawal(self, withdrawal_id: str) -> list[dict[str, Any]]:
        return self.db.select_many(LEDGER_TABLE, filters={"withdrawal_id": withdrawal_id})

    def entries_for_sweep_run(self, sweep_run_id: str) -> list[dict[str, Any]]:
        return self.db.select_many(LEDGER_TABLE, filters={"sweep_run_id": sweep_run_id})

    def roundups_for_transactions(self, transaction_ids: list[str]) -> dict[str, Decimal]:
        """Return the live round-up amount for each transaction id."""
        if not transaction_ids:
            return {}
        rows = self.db.execute(
            self.db.client.table(LEDGER_TABLE)
            .select("transaction_id,entry_type,amount")
            .in_("transaction_id", transaction_ids),
            default=[],
        )
        amounts: dict[str, Decimal] = {}
        for row in rows:
            key = str(row["transaction_id"])
            amount = to_decimal(row["amount"])
            if row["entry_type"] == EntryType.ROUNDUP_CORRECTION:
                amount = -amount
            amounts[key] = amounts.get(key, ZERO) + amount
        return amounts


def live_roundup_count(entries: list[dict[str, Any]]) -> int:
    """Count round-up credits for a transaction not offset by a correction."""
    credits = sum(1 for row in entries if row["entry_type"] == EntryType.ROUNDUP)
    corrections = sum(1 for row in entries if row["entry_type"] == EntryType.ROUNDUP_CORRECTION)
    return credits - corrections


def has_entry_type(entries: list[dict[str, Any]], entry_type: EntryType) -> bool:
    return any(row["entry_type"] == entry_type for row in entries)


def find_duplicate_roundups(entries: list[dict[str, Any]]) -> list[str]:
    """Return transaction ids with more than one live round-up entry."""
    by_transaction: dict[str, list[dict[str, Any]]] = {}
    for row in entries:
        if row.get("transaction_id"):
            by_transaction.setdefault(str(row["transaction_id"]), []).append(row)
    return sorted(tid for tid, rows in by_transaction.items() if live_roundup_count(rows) > 1)
