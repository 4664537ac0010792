"""Sweep settings, runs and merchant exclusion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_broker, get_db_client, require_user_id
from app.providers.base import BrokerProvider
from app.schemas.sweep import (
    MerchantExclusionCreate,
    SweepSettingsResponse,
    SweepSettingsUpdate,
)
from app.services.settings_service import SettingsService
from app.services.sweep_service import SweepService
from supabase import Client

router = APIRouter()


@router.get("/settings", response_model=SweepSettingsResponse)
def get_settings(
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    return SettingsService(client).get(user_id).to_dict()


@router.put("/settings", response_model=SweepSettingsResponse)
def update_settings(
    payload: SweepSettingsUpdate,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """Update sweep day, cap, threshold, risk profile or the active flag."""
    updated = SettingsService(client).update(user_id, payload.model_dump(exclude_none=True))
    return updated.to_dict()


@router.get("/runs")
def list_runs(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
    broker: BrokerProvider = Depends(get_broker),
) -> dict:
    """List the user's sweep runs, newest first."""
    runs = SweepService(client, broker).list_runs(user_id, limit=limit, offset=offset)
    return {"runs": runs}


@router.get("/exclusions")
def list_exclusions(
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    return {"merchants": SettingsService(client).excluded_merchants(user_id)}


@router.post("/exclusions")
def add_exclusion(
    payload: MerchantExclusionCreate,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """Exclude a merchant from future round-ups."""
    exclusion = SettingsService(client).add_merchant_exclusion(user_id, payload.merchant_name)
    return {"exclusion": exclusion}


@router.delete("/exclusions/{merchant_name}")
def remove_exclusion(
    merchant_name: str,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    SettingsService(client).remove_merchant_exclusion(user_id, merchant_name)
    return {"success": True}
