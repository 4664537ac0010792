"""Alpaca Broker API adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import httpx

from app.providers.base import BrokerProvider, OrderOutcome, OrderState, client_order_id
from app.utils.errors import AppError, ExternalProviderError, ProviderTimeoutError
from app.utils.money import to_decimal

logger = logging.getLogger(__name__)

_REJECTED_STATES = {"rejected", "canceled", "cancelled", "expired", "suspended"}


def to_outcome(payload: dict[str, Any]) -> OrderOutcome:
    """Map an Alpaca order document to an OrderOutcome."""
    status = str(payload.get("status") or "").lower()
    if status == "filled":
        state = OrderState.FILLED
    elif status in _REJECTED_STATES:
        state = OrderState.REJECTED
    else:
        state = OrderState.PENDING
    filled_qty = payload.get("filled_qty")
    return OrderOutcome(
        status=state,
        external_order_id=payload.get("id"),
        filled_quantity=to_decimal(filled_qty) if filled_qty not in (None, "") else None,
        message=status or None,
    )


class AlpacaBroker(BrokerProvider):
    """Notional market buys through the Alpaca Broker API.

    ``account_resolver`` maps a user id to the user's Alpaca account id.
    """

    name = "alpaca"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        account_resolver: Callable[[str], str],
        timeout_seconds: float = 10,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.account_resolver = account_resolver
        self.http = http_client or httpx.Client(
            base_url=base_url,
            auth=(api_key, api_secret),
            timeout=httpx.Timeout(timeout_seconds),
        )

    def place_order(
        self,
        user_id: str,
        symbol: str,
        amount: Decimal,
        sweep_run_id: str,
    ) -> OrderOutcome:
        try:
            account_id = self.account_resolver(user_id)
        except AppError as exc:
            return OrderOutcome(status=OrderState.REJECTED, message=exc.message)
        body = {
            "symbol": symbol,
            "notional": format(amount, "f"),
            "side": "buy",
            "type": "market",
            "time_in_force": "day",
            "client_order_id": client_order_id(sweep_run_id, symbol),
        }
        response = self._request("POST", f"/v1/trading/accounts/{account_id}/orders", json=body)
        if response.status_code in (400, 403, 422):
            logger.warning("Alpaca rejected order %s %s: %s", symbol, amount, response.text)
            return OrderOutcome(status=OrderState.REJECTED, message=response.text[:500])
        self._raise_for_status(response)
        return to_outcome(response.json())

    def get_order(self, user_id: str, external_order_id: str) -> OrderOutcome:
        account_id = self.account_resolver(user_id)
        response = self._request(
            "GET", f"/v1/trading/accounts/{account_id}/orders/{external_order_id}"
        )
        self._raise_for_status(response)
        return to_outcome(response.json())

    def find_order(self, user_id: str, client_order_id: str) -> OrderOutcome | None:
        account_id = self.account_resolver(user_id)
        response = self._request(
            "GET",
            f"/v1/trading/accounts/{account_id}/orders:by_client_order_id",
            params={"client_order_id": client_order_id},
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return to_outcome(response.json())

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(self.name) from exc
        except httpx.HTTPError as exc:
            raise ExternalProviderError(self.name, str(exc)) from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_error:
            logger.error("Alpaca request failed %s: %s", response.status_code, response.text)
            raise ExternalProviderError(self.name, f"HTTP {response.status_code}")
