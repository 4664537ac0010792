"""Scheduler triggers and provider callbacks for trusted callers."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.dependencies import get_broker, get_db_client, get_payout, verify_internal_token
from app.providers.base import BrokerProvider, PayoutProvider
from app.schemas.sweep import SweepTriggerRequest
from app.schemas.withdrawal import SettlementCallback
from app.services.sweep_service import RUN_CREATED, SweepService
from app.services.withdrawal_service import WithdrawalService
from supabase import Client

router = APIRouter(dependencies=[Depends(verify_internal_token)])


@router.post("/sweeps/run")
def trigger_sweeps(
    payload: SweepTriggerRequest | None = None,
    client: Client = Depends(get_db_client),
    broker: BrokerProvider = Depends(get_broker),
) -> dict:
    """Run the sweep cycle for all users, or evaluate a single user."""
    payload = payload or SweepTriggerRequest()
    service = SweepService(client, broker)
    if payload.user_id is None:
        return {"summary": service.run_due_sweeps(payload.today)}

    decision = service.evaluate(payload.user_id, payload.today)
    if decision.state == RUN_CREATED and decision.run is not None:
        decision.run = service.execute(decision.run)
    return {"decision": asdict(decision)}


@router.post("/orders/sync")
def sync_orders(
    client: Client = Depends(get_db_client),
    broker: BrokerProvider = Depends(get_broker),
) -> dict:
    """Poll pending broker orders and settle finished sweep runs."""
    return {"summary": SweepService(client, broker).sync_orders()}


@router.post("/withdrawals/{withdrawal_id}/settlement")
def settle_withdrawal(
    withdrawal_id: str,
    payload: SettlementCallback,
    client: Client = Depends(get_db_client),
    payout: PayoutProvider = Depends(get_payout),
) -> dict:
    """Record the payout provider's final result for a withdrawal."""
    withdrawal = WithdrawalService(client, payout).settle(
        withdrawal_id, succeeded=payload.succeeded, reason=payload.reason
    )
    return {"withdrawal": withdrawal}


@router.post("/withdrawals/expire")
def expire_withdrawals(
    client: Client = Depends(get_db_client),
    payout: PayoutProvider = Depends(get_payout),
) -> dict:
    """Fail and compensate withdrawals past the settlement SLA."""
    return {"summary": WithdrawalService(client, payout).expire_stale()}
