"""Withdrawal schemas."""

from decimal import Decimal

from pydantic import BaseModel, Field


class WithdrawalCreate(BaseModel):
    """Request body for withdrawing from the vault."""

    amount: Decimal = Field(..., gt=0)
    destination_account_id: str


class SettlementCallback(BaseModel):
    """Final payout result reported by the payout provider."""

    succeeded: bool
    reason: str | None = Field(default=None, max_length=500)
