"""Background job modules for periodic vault tasks."""

from app.jobs.daily_sweep import daily_sweep
from app.jobs.ledger_audit import ledger_audit
from app.jobs.order_sync import order_sync
from app.jobs.withdrawal_expiry import withdrawal_expiry

__all__ = [
    "daily_sweep",
    "ledger_audit",
    "order_sync",
    "withdrawal_expiry",
]
