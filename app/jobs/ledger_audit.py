"""Nightly full-ledger reconciliation job."""

from __future__ import annotations

import logging

from app.services.balance_service import BalanceService
from app.utils.supabase_client import get_service_client

logger = logging.getLogger(__name__)


async def ledger_audit() -> None:
    """Refold every user's ledger and open integrity holds for violations."""
    service = BalanceService(get_service_client())
    user_ids = service.ledger_user_ids()
    flagged = 0
    for user_id in user_ids:
        if service.audit(user_id):
            flagged += 1
    logger.info("ledger_audit completed for %s users, %s flagged", len(user_ids), flagged)
