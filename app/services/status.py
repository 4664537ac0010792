"""Settlement status machine shared by sweep runs and withdrawals."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from app.services.common import SupabaseService
from app.utils.errors import ConcurrencyConflictError, ConflictError

logger = logging.getLogger(__name__)


class SettlementStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OrderStatus(StrEnum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EntryType(StrEnum):
    ROUNDUP = "roundup"
    ROUNDUP_CORRECTION = "roundup_correction"
    SWEEP_INVESTMENT = "sweep_investment"
    WITHDRAWAL_RESERVATION = "withdrawal_reservation"
    WITHDRAWAL_COMPENSATION = "withdrawal_compensation"


TERMINAL_STATUSES = frozenset({SettlementStatus.COMPLETED, SettlementStatus.FAILED})

_TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    SettlementStatus.PENDING: frozenset({SettlementStatus.PROCESSING, SettlementStatus.FAILED}),
    SettlementStatus.PROCESSING: frozenset(
        {SettlementStatus.COMPLETED, SettlementStatus.FAILED}
    ),
    SettlementStatus.COMPLETED: frozenset(),
    SettlementStatus.FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Return whether ``current -> target`` is a legal settlement transition."""
    return SettlementStatus(target) in _TRANSITIONS[SettlementStatus(current)]


def ensure_transition(current: str, target: str, label: str) -> None:
    """Raise ConflictError when ``current -> target`` is not allowed."""
    if not can_transition(current, target):
        raise ConflictError(
            f"{label} cannot move from {current} to {target}",
            code="INVALID_STATUS_TRANSITION",
        )


def is_terminal(status: str) -> bool:
    """Return True for completed/failed."""
    return SettlementStatus(status) in TERMINAL_STATUSES


def transition_row(
    db: SupabaseService,
    table: str,
    row: dict[str, Any],
    target: SettlementStatus,
    label: str,
    **fields: Any,
) -> dict[str, Any]:
    """Move ``row`` to ``target`` with a write conditional on its current status."""
    ensure_transition(row["status"], target, label)
    payload = {"status": str(target), **fields}
    rows = db.update(table, {"id": row["id"], "status": row["status"]}, payload)
    if not rows:
        raise ConcurrencyConflictError(f"{label} {row['id']} changed concurrently")
    logger.info("%s %s: %s -> %s", label, row["id"], row["status"], target)
    return rows[0]
