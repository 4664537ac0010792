"""Withdrawal settlement SLA job."""

from __future__ import annotations

import logging

from app.providers.registry import get_payout_provider
from app.services.withdrawal_service import WithdrawalService
from app.utils.supabase_client import get_service_client

logger = logging.getLogger(__name__)


async def withdrawal_expiry() -> None:
    """Fail and compensate withdrawals that outlived the settlement SLA."""
    service = WithdrawalService(get_service_client(), get_payout_provider())
    summary = service.expire_stale()
    logger.info("withdrawal_expiry completed: %s", summary)
