"""Service package exports with lazy loading."""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS = {
    "BalanceService": "app.services.balance_service",
    "IntegrityService": "app.services.integrity_service",
    "LedgerService": "app.services.ledger_service",
    "LockService": "app.services.lock_service",
    "RoundUpService": "app.services.roundup_service",
    "SettingsService": "app.services.settings_service",
    "SupabaseService": "app.services.common",
    "SweepService": "app.services.sweep_service",
    "TransactionService": "app.services.transaction_service",
    "WithdrawalService": "app.services.withdrawal_service",
}

__all__ = sorted(_EXPORTS.keys())


def __getattr__(name: str) -> Any:
    if name not in _EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(_EXPORTS[name])
    return getattr(module, name)
