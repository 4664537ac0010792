"""Vault balance and ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from app.config import settings
from app.dependencies import get_db_client, require_user_id
from app.schemas.ledger import LedgerPage, VaultBalanceResponse
from app.services.balance_service import BalanceService
from app.services.common import SupabaseService
from app.services.ledger_service import LedgerService
from app.services.sweep_service import in_flight_sweep_amount
from app.utils.money import ZERO
from supabase import Client

router = APIRouter()


@router.get("/balance", response_model=VaultBalanceResponse)
def get_balance(
    as_of: datetime | None = Query(default=None),
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> VaultBalanceResponse:
    """Return the ledger-derived vault balance, optionally at a past instant."""
    result = BalanceService(client).get_balance(user_id, as_of=as_of)
    pending_sweep = ZERO if as_of else in_flight_sweep_amount(SupabaseService(client), user_id)
    return VaultBalanceResponse(
        balance=result.balance,
        this_month=result.this_month,
        pending_sweep=pending_sweep,
        available=max(ZERO, result.balance - pending_sweep),
        currency=settings.default_currency,
        entry_count=result.entry_count,
        as_of=result.as_of,
    )


@router.get("/ledger", response_model=LedgerPage)
def get_ledger(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """Return the current user's ledger entries, newest first."""
    entries, total = LedgerService(client).list_entries(user_id, limit=limit, offset=offset)
    return {"entries": entries, "total": total}
