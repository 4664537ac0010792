"""Vault withdrawal endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_db_client, get_payout, require_user_id
from app.providers.base import PayoutProvider
from app.schemas.withdrawal import WithdrawalCreate
from app.services.withdrawal_service import WithdrawalService
from supabase import Client

router = APIRouter()


@router.post("", status_code=201)
def create_withdrawal(
    payload: WithdrawalCreate,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
    payout: PayoutProvider = Depends(get_payout),
) -> dict:
    """Reserve funds and start a payout to one of the user's bank accounts."""
    withdrawal = WithdrawalService(client, payout).initiate(
        user_id,
        amount=payload.amount,
        destination_account_id=payload.destination_account_id,
    )
    return {"withdrawal": withdrawal}


@router.get("")
def list_withdrawals(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
    payout: PayoutProvider = Depends(get_payout),
) -> dict:
    withdrawals = WithdrawalService(client, payout).list_withdrawals(
        user_id, limit=limit, offset=offset
    )
    return {"withdrawals": withdrawals}


@router.get("/{withdrawal_id}")
def get_withdrawal(
    withdrawal_id: str,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
    payout: PayoutProvider = Depends(get_payout),
) -> dict:
    withdrawal = WithdrawalService(client, payout).get(withdrawal_id, user_id=user_id)
    return {"withdrawal": withdrawal}
