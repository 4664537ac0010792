"""Integrity holds that stop automated sweeps for a user."""

from __future__ import annotations

import logging
from typing import Any

from app.services.common import SupabaseService
from app.utils.errors import DataIntegrityError, NotFoundError
from app.utils.time import now_utc
from supabase import Client

logger = logging.getLogger(__name__)

HOLDS_TABLE = "integrity_holds"


class IntegrityService:
    """Record ledger invariant violations until an operator resolves them."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def open_holds(self, user_id: str) -> list[dict[str, Any]]:
        """Return unresolved holds for a user."""
        return self.db.execute(
            self.db.client.table(HOLDS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .is_("resolved_at", "null"),
            default=[],
        )

    def has_open_hold(self, user_id: str) -> bool:
        return bool(self.open_holds(user_id))

    def flag(self, error: DataIntegrityError) -> dict[str, Any]:
        """Persist a hold for ``error`` unless one with the same reason is open."""
        logger.error(
            "Data integrity violation for user %s: %s", error.user_id, error.message
        )
        for hold in self.open_holds(error.user_id):
            if hold["reason"] == error.reason:
                return hold
        return self.db.insert_one(
            HOLDS_TABLE,
            {
                "user_id": error.user_id,
                "reason": error.reason,
                "detail": error.detail,
                "detected_at": now_utc().isoformat(),
                "resolved_at": None,
            },
        )

    def resolve(self, hold_id: str) -> dict[str, Any]:
        """Mark a hold as manually reconciled."""
        rows = self.db.update(HOLDS_TABLE, {"id": hold_id}, {"resolved_at": now_utc().isoformat()})
        if not rows:
            raise NotFoundError("Integrity hold")
        logger.info("Integrity hold %s resolved", hold_id)
        return rows[0]
