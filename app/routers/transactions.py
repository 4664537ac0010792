"""Card transaction endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_db_client, require_user_id
from app.schemas.transaction import (
    IngestSummary,
    TransactionBatch,
    TransactionClassificationUpdate,
)
from app.services.transaction_service import TransactionService
from supabase import Client

router = APIRouter()


@router.post("", response_model=IngestSummary)
def ingest_transactions(
    payload: TransactionBatch,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """Ingest a batch from the banking sync; known external ids are skipped."""
    service = TransactionService(client)
    rows = [item.model_dump(exclude_none=True) for item in payload.transactions]
    return service.ingest_many(user_id, rows)


@router.get("")
def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """List recent transactions with their round-up amounts."""
    transactions = TransactionService(client).list_transactions(
        user_id, limit=limit, offset=offset
    )
    return {"transactions": transactions}


@router.patch("/{transaction_id}")
def update_transaction(
    transaction_id: str,
    payload: TransactionClassificationUpdate,
    user_id: str = Depends(require_user_id),
    client: Client = Depends(get_db_client),
) -> dict:
    """Fix a transaction's category or exclusion flag."""
    transaction = TransactionService(client).update_classification(
        user_id,
        transaction_id,
        category=payload.category,
        is_excluded=payload.is_excluded,
    )
    return {"transaction": transaction}
