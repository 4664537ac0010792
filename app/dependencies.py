"""FastAPI dependency injection helpers."""

from __future__ import annotations

import secrets
import threading
import time
from typing import Any

from fastapi import Depends, Header

from app.config import settings
from app.providers.base import BrokerProvider, PayoutProvider
from app.providers.registry import get_broker_provider, get_payout_provider
from app.utils.errors import ForbiddenError, UnauthorizedError
from app.utils.supabase_client import get_service_client, get_supabase_client
from supabase import Client

_token_cache: dict[str, tuple[float, Any]] = {}
_cache_lock = threading.Lock()


def _cache_get(cache: dict[Any, tuple[float, Any]], key: Any) -> Any | None:
    """Return a cache value when present and not expired."""
    now = time.monotonic()
    with _cache_lock:
        entry = cache.get(key)
        if not entry:
            return None
        expires_at, value = entry
        if expires_at <= now:
            cache.pop(key, None)
            return None
        return value


def _cache_set(
    cache: dict[Any, tuple[float, Any]],
    key: Any,
    value: Any,
    ttl_seconds: int,
    max_entries: int,
) -> None:
    """Store a bounded cache value with TTL."""
    if ttl_seconds <= 0:
        return

    with _cache_lock:
        bounded_max_entries = max(1, max_entries)
        if len(cache) >= bounded_max_entries:
            oldest_key = next(iter(cache))
            cache.pop(oldest_key, None)
        cache[key] = (time.monotonic() + ttl_seconds, value)


def get_current_user(authorization: str = Header(None)) -> Any:
    """Extract and validate a Supabase JWT from the Authorization header.

    Raises:
        UnauthorizedError: 401 if the header is missing, malformed, or
            the token cannot be validated.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing authorization header")

    token = authorization.split(" ", 1)[1]
    cached_user = _cache_get(_token_cache, token)
    if cached_user is not None:
        return cached_user

    supabase = get_supabase_client()

    try:
        response = supabase.auth.get_user(token)
        if not response or not response.user:
            raise UnauthorizedError("Invalid token")
        _cache_set(
            _token_cache,
            token,
            response.user,
            settings.auth_token_cache_ttl_seconds,
            settings.auth_token_cache_max_entries,
        )
        return response.user
    except UnauthorizedError:
        raise
    except Exception as exc:
        raise UnauthorizedError("Invalid or expired token") from exc


def get_current_user_id(user: Any) -> str:
    """Extract a stable user id string from the Supabase user object."""
    return str(user.id)


def verify_internal_token(x_internal_token: str = Header(None)) -> None:
    """Guard scheduler triggers and provider callbacks with a shared secret."""
    expected = settings.internal_api_token
    if not expected:
        raise ForbiddenError("Internal endpoints are disabled")
    if not x_internal_token or not secrets.compare_digest(x_internal_token, expected):
        raise UnauthorizedError("Invalid internal token")


def get_db_client() -> Client:
    """Return the privileged Supabase client used by backend services."""
    return get_service_client()


def get_broker() -> BrokerProvider:
    return get_broker_provider()


def get_payout() -> PayoutProvider:
    return get_payout_provider()


def require_user_id(user: Any = Depends(get_current_user)) -> str:
    """Resolve the authenticated user's id for vault endpoints."""
    return get_current_user_id(user)
