"""APScheduler setup and job registration."""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.jobs.daily_sweep import daily_sweep
from app.jobs.ledger_audit import ledger_audit
from app.jobs.order_sync import order_sync
from app.jobs.withdrawal_expiry import withdrawal_expiry

scheduler = AsyncIOScheduler(timezone=settings.timezone)


def register_jobs() -> None:
    """Register all periodic jobs if not already present."""
    if scheduler.get_job("daily_sweep") is None:
        scheduler.add_job(
            daily_sweep,
            CronTrigger(hour=settings.sweep_hour, minute=0, timezone=settings.timezone),
            id="daily_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    if scheduler.get_job("order_sync") is None:
        scheduler.add_job(
            order_sync,
            CronTrigger(
                minute=f"*/{max(1, settings.order_sync_interval_minutes)}",
                timezone=settings.timezone,
            ),
            id="order_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    if scheduler.get_job("withdrawal_expiry") is None:
        scheduler.add_job(
            withdrawal_expiry,
            CronTrigger(minute=30, timezone=settings.timezone),
            id="withdrawal_expiry",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    if scheduler.get_job("ledger_audit") is None:
        scheduler.add_job(
            ledger_audit,
            CronTrigger(hour=3, minute=15, timezone=settings.timezone),
            id="ledger_audit",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
