"""Daily sweep scheduled job."""

from __future__ import annotations

import logging

from app.providers.registry import get_broker_provider
from app.services.sweep_service import SweepService
from app.utils.supabase_client import get_service_client
from app.utils.time import utc_today

logger = logging.getLogger(__name__)


async def daily_sweep() -> None:
    """Create and execute today's sweep runs for every active user."""
    service = SweepService(get_service_client(), get_broker_provider())
    summary = service.run_due_sweeps(utc_today())
    logger.info("daily_sweep completed: %s", summary)
