"""Vault ledger and balance schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class LedgerEntryResponse(BaseModel):
    """A single round-up ledger entry."""

    id: str
    user_id: str
    entry_type: str
    amount: Decimal
    currency: str
    is_reversal: bool
    transaction_id: str | None = None
    withdrawal_id: str | None = None
    sweep_run_id: str | None = None
    created_at: datetime


class LedgerPage(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int


class VaultBalanceResponse(BaseModel):
    """Balance derived from the ledger at ``as_of``."""

    balance: Decimal
    this_month: Decimal
    pending_sweep: Decimal = Decimal("0")
    available: Decimal
    currency: str
    entry_count: int
    as_of: datetime
