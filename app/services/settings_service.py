"""Sweep settings and merchant exclusion overrides."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.config import settings
from app.services.common import SupabaseService
from app.utils.errors import NotFoundError, ValidationError
from app.utils.money import ZERO, to_db, to_decimal
from app.utils.time import now_utc
from supabase import Client

RISK_PROFILES = ("conservative", "balanced", "growth")
MIN_SWEEP_DAY = 1
MAX_SWEEP_DAY = 28

# Model portfolio per risk profile: (symbol, weight).
PORTFOLIO_INSTRUMENTS: dict[str, tuple[tuple[str, Decimal], ...]] = {
    "conservative": (
        ("AGG", Decimal("0.40")),
        ("BND", Decimal("0.30")),
        ("VTI", Decimal("0.20")),
        ("SGOV", Decimal("0.10")),
    ),
    "balanced": (
        ("VTI", Decimal("0.30")),
        ("VXUS", Decimal("0.20")),
        ("AGG", Decimal("0.25")),
        ("BND", Decimal("0.15")),
        ("SGOV", Decimal("0.10")),
    ),
    "growth": (
        ("VTI", Decimal("0.35")),
        ("QQQ", Decimal("0.25")),
        ("VXUS", Decimal("0.20")),
        ("AGG", Decimal("0.15")),
        ("SGOV", Decimal("0.05")),
    ),
}


@dataclass(frozen=True)
class SweepSettings:
    user_id: str
    is_active: bool
    sweep_day: int
    monthly_cap: Decimal
    minimum_threshold: Decimal
    risk_profile: str

    @classmethod
    def defaults(cls, user_id: str) -> SweepSettings:
        return cls(
            user_id=user_id,
            is_active=False,
            sweep_day=settings.default_sweep_day,
            monthly_cap=Decimal(settings.default_monthly_cap),
            minimum_threshold=Decimal(settings.default_minimum_threshold),
            risk_profile=settings.default_risk_profile,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SweepSettings:
        """Build settings from a row, filling nullable columns with defaults."""
        base = cls.defaults(str(row["user_id"]))
        return cls(
            user_id=base.user_id,
            is_active=bool(row.get("is_active")),
            sweep_day=int(row.get("sweep_day") or base.sweep_day),
            monthly_cap=(
                to_decimal(row["monthly_cap"])
                if row.get("monthly_cap") is not None
                else base.monthly_cap
            ),
            minimum_threshold=(
                to_decimal(row["minimum_threshold"])
                if row.get("minimum_threshold") is not None
                else base.minimum_threshold
            ),
            risk_profile=row.get("risk_profile") or base.risk_profile,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "is_active": self.is_active,
            "sweep_day": self.sweep_day,
            "monthly_cap": self.monthly_cap,
            "minimum_threshold": self.minimum_threshold,
            "risk_profile": self.risk_profile,
        }


def validate_settings_update(updates: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial settings update and return the DB payload."""
    payload: dict[str, Any] = {}
    if "is_active" in updates:
        payload["is_active"] = bool(updates["is_active"])
    if "sweep_day" in updates:
        sweep_day = int(updates["sweep_day"])
        if not MIN_SWEEP_DAY <= sweep_day <= MAX_SWEEP_DAY:
            raise ValidationError(f"Sweep day must be between {MIN_SWEEP_DAY} and {MAX_SWEEP_DAY}")
        payload["sweep_day"] = sweep_day
    if "monthly_cap" in updates:
        cap = to_decimal(updates["monthly_cap"])
        max_cap = Decimal(settings.max_monthly_cap)
        if cap <= ZERO or cap > max_cap:
            raise ValidationError(f"Monthly cap must be greater than 0 and at most {max_cap}")
        payload["monthly_cap"] = to_db(cap)
    if "minimum_threshold" in updates:
        threshold = to_decimal(updates["minimum_threshold"])
        if threshold < ZERO:
            raise ValidationError("Minimum threshold cannot be negative")
        payload["minimum_threshold"] = to_db(threshold)
    if "risk_profile" in updates:
        if updates["risk_profile"] not in RISK_PROFILES:
            raise ValidationError(f"Risk profile must be one of {', '.join(RISK_PROFILES)}")
        payload["risk_profile"] = updates["risk_profile"]
    return payload


class SettingsService:
    """Read and update per-user sweep configuration."""

    def __init__(self, client: Client) -> None:
        self.db = SupabaseService(client)

    def get(self, user_id: str) -> SweepSettings:
        """Return the user's settings, or defaults when none are stored."""
        row = self.db.select_first("sweep_settings", {"user_id": user_id})
        if row is None:
            return SweepSettings.defaults(user_id)
        return SweepSettings.from_row(row)

    def update(self, user_id: str, updates: dict[str, Any]) -> SweepSettings:
        """Apply a validated partial update, creating the row on first write."""
        payload = validate_settings_update(updates)
        if not payload:
            return self.get(user_id)
        payload["updated_at"] = now_utc().isoformat()

        rows = self.db.update("sweep_settings", {"user_id": user_id}, payload)
        if not rows:
            defaults = SweepSettings.defaults(user_id)
            row = {
                "user_id": user_id,
                "is_active": defaults.is_active,
                "sweep_day": defaults.sweep_day,
                "monthly_cap": to_db(defaults.monthly_cap),
                "minimum_threshold": to_db(defaults.minimum_threshold),
                "risk_profile": defaults.risk_profile,
            }
            row.update(payload)
            rows = [self.db.insert_one("sweep_settings", row)]
        return SweepSettings.from_row(rows[0])

    def list_active(self) -> list[SweepSettings]:
        """Return every active configuration for the scheduler."""
        rows = self.db.select_many("sweep_settings", filters={"is_active": True})
        return [SweepSettings.from_row(row) for row in rows]

    def excluded_merchants(self, user_id: str) -> list[str]:
        rows = self.db.select_many("merchant_exclusions", filters={"user_id": user_id})
        return [str(row["merchant_name"]) for row in rows]

    def add_merchant_exclusion(self, user_id: str, merchant_name: str) -> dict[str, Any]:
        """Exclude a merchant from future round-ups for a user."""
        name = merchant_name.strip()
        if not name:
            raise ValidationError("Merchant name is required")
        for existing in self.excluded_merchants(user_id):
            if existing.casefold() == name.casefold():
                return {"user_id": user_id, "merchant_name": existing}
        return self.db.insert_one(
            "merchant_exclusions",
            {"user_id": user_id, "merchant_name": name, "created_at": now_utc().isoformat()},
        )

    def remove_merchant_exclusion(self, user_id: str, merchant_name: str) -> None:
        removed = self.db.delete(
            "merchant_exclusions", {"user_id": user_id, "merchant_name": merchant_name.strip()}
        )
        if not removed:
            raise NotFoundError("Merchant exclusion")
