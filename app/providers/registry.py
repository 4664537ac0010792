"""Provider singletons selected by configuration."""

from __future__ import annotations

from functools import lru_cache

from app.config import settings
from app.providers.alpaca import AlpacaBroker
from app.providers.base import BrokerProvider, PayoutProvider
from app.providers.sandbox import SandboxBroker, SandboxPayout
from app.services.common import SupabaseService
from app.utils.errors import ValidationError
from app.utils.supabase_client import get_service_client


def resolve_broker_account(user_id: str) -> str:
    """Return the external brokerage account id of an approved user."""
    db = SupabaseService(get_service_client())
    account = db.select_one(
        "broker_accounts", {"user_id": user_id}, not_found_label="Broker account"
    )
    if account.get("kyc_status") != "approved":
        raise ValidationError("KYC not approved")
    return str(account["external_account_id"])


@lru_cache(maxsize=1)
def get_broker_provider() -> BrokerProvider:
    if settings.broker_provider == "alpaca":
        return AlpacaBroker(
            base_url=settings.broker_base_url,
            api_key=settings.broker_api_key,
            api_secret=settings.broker_api_secret,
            account_resolver=resolve_broker_account,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    if settings.is_production:
        raise RuntimeError("Sandbox broker cannot be used in production")
    return SandboxBroker()


@lru_cache(maxsize=1)
def get_payout_provider() -> PayoutProvider:
    # Only the sandbox payout exists until a payment-initiation provider is integrated.
    if settings.payout_provider != "sandbox" or settings.is_production:
        raise RuntimeError(f"Payout provider {settings.payout_provider!r} is not available")
    return SandboxPayout()
