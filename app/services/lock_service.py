"""Per-user lease locks backed by the ``user_locks`` table.

The table's primary key on ``user_id`` is the serialization point: the first
insert wins, every other caller gets a unique violation. Leases expire so a
crashed holder cannot block a user forever; only expired leases are taken over,
and the takeover is a conditional delete keyed on the previous holder.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from app.config import settings
from app.services.common import SupabaseService
from app.utils.errors import ConcurrencyConflictError, ConflictError
from app.utils.time import now_utc, parse_timestamp
from supabase import Client

logger = logging.getLogger(__name__)

LOCKS_TABLE = "user_locks"


class LockService:
    """Acquire and release per-user leases."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def acquire(self, user_id: str, purpose: str) -> str:
        """Acquire the user's lease and return the holder token."""
        holder = uuid.uuid4().hex
        attempts = max(1, settings.user_lock_attempts)
        delay = max(0, settings.user_lock_retry_delay_ms) / 1000

        for attempt in range(attempts):
            now = now_utc()
            try:
                self.db.insert_one(
                    LOCKS_TABLE,
                    {
                        "user_id": user_id,
                        "holder": holder,
                        "purpose": purpose,
                        "expires_at": (
                            now + timedelta(seconds=settings.user_lock_ttl_seconds)
                        ).isoformat(),
                    },
                )
                return holder
            except ConflictError:
                self._take_over_if_expired(user_id)
            if attempt + 1 < attempts:
                time.sleep(delay)

        logger.warning("Lock contended for user %s (%s)", user_id, purpose)
        raise ConcurrencyConflictError()

    def release(self, user_id: str, holder: str) -> None:
        """Release the lease if ``holder`` still owns it."""
        self.db.delete(LOCKS_TABLE, {"user_id": user_id, "holder": holder})

    @contextmanager
    def hold(self, user_id: str, purpose: str) -> Iterator[str]:
        """Hold the user's lease for the duration of the block."""
        holder = self.acquire(user_id, purpose)
        try:
            yield holder
        finally:
            self.release(user_id, holder)

    def _take_over_if_expired(self, user_id: str) -> None:
        current = self.db.select_first(LOCKS_TABLE, {"user_id": user_id})
        if current is None:
            return
        if parse_timestamp(current["expires_at"]) <= now_utc():
            logger.warning(
                "Clearing expired lock for user %s held by %s", user_id, current["holder"]
            )
            self.db.delete(LOCKS_TABLE, {"user_id": user_id, "holder": current["holder"]})
