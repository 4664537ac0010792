"""Card transaction schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class TransactionCreate(BaseModel):
    """One transaction pushed by the banking sync."""

    external_id: str = Field(..., min_length=1, max_length=255)
    account_id: str
    amount: Decimal
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    merchant_name: str | None = None
    category: str | None = None
    transaction_date: datetime | None = None
    is_eligible_for_roundup: bool = True


class TransactionBatch(BaseModel):
    transactions: list[TransactionCreate] = Field(..., min_length=1, max_length=500)


class TransactionClassificationUpdate(BaseModel):
    """Correction of a transaction's category or exclusion flag."""

    category: str | None = None
    is_excluded: bool | None = None


class IngestSummary(BaseModel):
    received: int
    created: int
    duplicates: int
    rounded_up: Decimal
