"""Broker order reconciliation job."""

from __future__ import annotations

import logging

from app.providers.registry import get_broker_provider
from app.services.sweep_service import SweepService
from app.utils.supabase_client import get_service_client

logger = logging.getLogger(__name__)


async def order_sync() -> None:
    """Poll pending broker orders and settle finished sweep runs."""
    service = SweepService(get_service_client(), get_broker_provider())
    summary = service.sync_orders()
    logger.info("order_sync completed: %s", summary)
