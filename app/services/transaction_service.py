"""Idempotent transaction ingestion and classification fixes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.config import settings
from app.services.common import SupabaseService
from app.services.ledger_service import LedgerService
from app.services.roundup_service import RoundUpService, is_transaction_excluded
from app.services.settings_service import SettingsService
from app.utils.errors import ConflictError, NotFoundError, ValidationError
from app.utils.money import ZERO, to_db, to_decimal
from app.utils.time import now_utc
from supabase import Client

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    transaction: dict[str, Any]
    created: bool
    roundup: dict[str, Any] | None = None


class TransactionService:
    """Store transactions from the banking feed and trigger round-ups."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)
        self.ledger = LedgerService(client)
        self.roundups = RoundUpService(client)
        self.settings = SettingsService(client)

    def ingest(self, user_id: str, payload: dict[str, Any]) -> IngestResult:
        """Ingest one transaction; re-ingesting an external id is a no-op."""
        external_id = str(payload.get("external_id") or "").strip()
        if not external_id:
            raise ValidationError("Transaction external_id is required")

        existing = self._find_by_external_id(user_id, external_id)
        if existing is not None:
            return self._resume(existing)

        row = self._build_row(user_id, external_id, payload)
        try:
            transaction = self.db.insert_one("transactions", row)
        except ConflictError:
            # Lost an insert race against the same external id.
            existing = self._find_by_external_id(user_id, external_id)
            if existing is None:
                raise
            return self._resume(existing)

        roundup = self.roundups.apply(transaction)
        return IngestResult(transaction=transaction, created=True, roundup=roundup)

    def ingest_many(self, user_id: str, payloads: list[dict[str, Any]]) -> dict[str, Any]:
        """Ingest a batch from one sync and summarize the outcome."""
        created = 0
        duplicates = 0
        rounded_up = ZERO
        for payload in payloads:
            result = self.ingest(user_id, payload)
            if result.created:
                created += 1
            else:
                duplicates += 1
            if result.roundup:
                rounded_up += to_decimal(result.roundup["amount"])

        logger.info(
            "Ingested %s transactions for user %s (%s new, %s duplicates)",
            len(payloads),
            user_id,
            created,
            duplicates,
        )
        return {
            "received": len(payloads),
            "created": created,
            "duplicates": duplicates,
            "rounded_up": rounded_up,
        }

    def list_transactions(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return recent transactions with their live round-up amounts."""
        rows = self.db.select_many(
            "transactions",
            filters={"user_id": user_id},
            order_by="transaction_date",
            descending=True,
            limit=limit,
            offset=offset,
        )
        roundups = self.ledger.roundups_for_transactions([str(row["id"]) for row in rows])
        enriched = []
        for row in rows:
            payload = dict(row)
            payload["roundup_amount"] = roundups.get(str(row["id"]), ZERO)
            enriched.append(payload)
        return enriched

    def get_transaction(self, user_id: str, transaction_id: str) -> dict[str, Any]:
        return self.db.select_one(
            "transactions",
            {"id": transaction_id, "user_id": user_id},
            not_found_label="Transaction",
        )

    def update_classification(
        self,
        user_id: str,
        transaction_id: str,
        category: str | None = None,
        is_excluded: bool | None = None,
    ) -> dict[str, Any]:
        """Correct category/exclusion and reconcile the transaction's round-up."""
        current = self.get_transaction(user_id, transaction_id)
        payload: dict[str, Any] = {}
        if category is not None:
            payload["category"] = category.strip() or None
        if is_excluded is None and "category" in payload:
            is_excluded = is_transaction_excluded(
                payload["category"],
                current.get("merchant_name"),
                settings.excluded_categories_list,
                self.settings.excluded_merchants(user_id),
            )
        if is_excluded is not None:
            payload["is_excluded"] = is_excluded
        if not payload:
            return current

        rows = self.db.update("transactions", {"id": transaction_id, "user_id": user_id}, payload)
        if not rows:
            raise NotFoundError("Transaction")
        updated = rows[0]

        was_excluded = bool(current.get("is_excluded"))
        now_excluded = bool(updated.get("is_excluded"))
        if now_excluded and not was_excluded:
            self.roundups.reverse(updated)
        elif was_excluded and not now_excluded:
            self.roundups.apply(updated)
        return updated

    def _resume(self, existing: dict[str, Any]) -> IngestResult:
        # Finish a round-up evaluation interrupted after the insert.
        roundup = None
        if not existing.get("roundup_processed_at"):
            roundup = self.roundups.apply(existing)
        return IngestResult(transaction=existing, created=False, roundup=roundup)

    def _find_by_external_id(self, user_id: str, external_id: str) -> dict[str, Any] | None:
        return self.db.select_first(
            "transactions", {"user_id": user_id, "external_id": external_id}
        )

    def _build_row(
        self,
        user_id: str,
        external_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        account_id = payload.get("account_id")
        if not account_id:
            raise ValidationError("Transaction account_id is required")
        account = self.db.select_first("bank_accounts", {"id": account_id, "user_id": user_id})
        if account is None:
            raise ValidationError("Unknown bank account")

        try:
            amount: Decimal = to_decimal(payload.get("amount"))
        except ValueError as exc:
            raise ValidationError("Transaction amount is invalid") from exc

        category = payload.get("category")
        merchant_name = payload.get("merchant_name") or "Unknown"
        is_excluded = is_transaction_excluded(
            category,
            merchant_name,
            settings.excluded_categories_list,
            self.settings.excluded_merchants(user_id),
        )
        transaction_date = payload.get("transaction_date") or now_utc()
        if not isinstance(transaction_date, str):
            transaction_date = transaction_date.isoformat()

        return {
            "user_id": user_id,
            "account_id": account_id,
            "external_id": external_id,
            "merchant_name": merchant_name,
            "category": category,
            "amount": to_db(amount),
            "currency": payload.get("currency")
            or account.get("currency")
            or settings.default_currency,
            "transaction_date": transaction_date,
            "is_eligible_for_roundup": bool(payload.get("is_eligible_for_roundup", True)),
            "is_excluded": is_excluded,
            "roundup_processed_at": None,
            "created_at": now_utc().isoformat(),
        }
