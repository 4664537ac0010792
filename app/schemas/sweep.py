"""Sweep settings and run schemas."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class SweepSettingsUpdate(BaseModel):
    """Partial update of a user's sweep configuration."""

    is_active: bool | None = None
    sweep_day: int | None = Field(default=None, ge=1, le=28)
    monthly_cap: Decimal | None = Field(default=None, gt=0)
    minimum_threshold: Decimal | None = Field(default=None, ge=0)
    risk_profile: str | None = Field(default=None, pattern="^(conservative|balanced|growth)$")


class SweepSettingsResponse(BaseModel):
    user_id: str
    is_active: bool
    sweep_day: int
    monthly_cap: Decimal
    minimum_threshold: Decimal
    risk_profile: str


class MerchantExclusionCreate(BaseModel):
    merchant_name: str = Field(..., min_length=1, max_length=255)


class SweepTriggerRequest(BaseModel):
    """Body for the internal sweep trigger; ``today`` defaults to the UTC date."""

    today: date | None = None
    user_id: str | None = None
