"""HTTP surface tests against the fake database."""

from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient

from app.config import settings


def _ingest(api: TestClient, bank_account: dict, *amounts: str):
    return api.post(
        "/transactions",
        json={
            "transactions": [
                {
                    "external_id": f"card-{index}",
                    "account_id": bank_account["id"],
                    "amount": amount,
                    "merchant_name": "Bakery",
                    "category": "Food",
                }
                for index, amount in enumerate(amounts)
            ]
        },
    )


def test_requests_without_token_are_unauthorized(client: TestClient) -> None:
    response = client.get("/vault/balance")
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_ingest_then_read_balance_and_ledger(api: TestClient, bank_account) -> None:
    response = _ingest(api, bank_account, "4.20", "47.63")
    assert response.status_code == 200
    assert response.json()["created"] == 2
    assert Decimal(response.json()["rounded_up"]) == Decimal("1.17")

    again = _ingest(api, bank_account, "4.20", "47.63")
    assert again.json()["duplicates"] == 2

    balance = api.get("/vault/balance").json()
    assert Decimal(balance["balance"]) == Decimal("1.17")
    assert Decimal(balance["available"]) == Decimal("1.17")
    assert balance["currency"] == "EUR"

    ledger = api.get("/vault/ledger", params={"limit": 1}).json()
    assert ledger["total"] == 2
    assert len(ledger["entries"]) == 1


def test_settings_validation(api: TestClient) -> None:
    assert api.get("/sweeps/settings").json()["is_active"] is False

    ok = api.put("/sweeps/settings", json={"is_active": True, "monthly_cap": "100"})
    assert ok.status_code == 200
    assert Decimal(ok.json()["monthly_cap"]) == Decimal("100")

    too_high = api.put("/sweeps/settings", json={"monthly_cap": "501"})
    assert too_high.status_code == 422
    assert too_high.json()["code"] == "VALIDATION_ERROR"

    bad_day = api.put("/sweeps/settings", json={"sweep_day": 29})
    assert bad_day.status_code == 422


def test_merchant_exclusions(api: TestClient) -> None:
    assert api.post("/sweeps/exclusions", json={"merchant_name": "Casino"}).status_code == 200
    assert api.get("/sweeps/exclusions").json() == {"merchants": ["Casino"]}
    assert api.delete("/sweeps/exclusions/Casino").status_code == 200
    assert api.delete("/sweeps/exclusions/Casino").status_code == 404


def test_withdrawal_flow(api: TestClient, bank_account, fund, user_id) -> None:
    fund(user_id, "50.00")
    too_much = api.post(
        "/withdrawals",
        json={"amount": "60.00", "destination_account_id": bank_account["id"]},
    )
    assert too_much.status_code == 400
    assert too_much.json()["code"] == "INSUFFICIENT_FUNDS"

    created = api.post(
        "/withdrawals",
        json={"amount": "20.00", "destination_account_id": bank_account["id"]},
    )
    assert created.status_code == 201
    withdrawal = created.json()["withdrawal"]
    assert withdrawal["status"] == "processing"
    assert Decimal(api.get("/vault/balance").json()["balance"]) == Decimal("30.00")

    listed = api.get("/withdrawals").json()["withdrawals"]
    assert [item["id"] for item in listed] == [withdrawal["id"]]


def test_internal_endpoints_require_token(api: TestClient) -> None:
    assert api.post("/internal/orders/sync").status_code == 401
    wrong = api.post("/internal/orders/sync", headers={"X-Internal-Token": "nope"})
    assert wrong.status_code == 401


def test_settlement_callback_compensates(api: TestClient, bank_account, fund, user_id) -> None:
    fund(user_id, "50.00")
    withdrawal = api.post(
        "/withdrawals",
        json={"amount": "20.00", "destination_account_id": bank_account["id"]},
    ).json()["withdrawal"]

    response = api.post(
        f"/internal/withdrawals/{withdrawal['id']}/settlement",
        json={"succeeded": False, "reason": "Account closed"},
        headers={"X-Internal-Token": settings.internal_api_token},
    )

    assert response.status_code == 200
    assert response.json()["withdrawal"]["status"] == "failed"
    assert Decimal(api.get("/vault/balance").json()["balance"]) == Decimal("50.00")


def test_internal_sweep_trigger_runs_one_user(
    api: TestClient, bank_account, fund, user_id
) -> None:
    fund(user_id, "20.00")
    api.put("/sweeps/settings", json={"is_active": True, "sweep_day": 1})
    headers = {"X-Internal-Token": settings.internal_api_token}

    response = api.post(
        "/internal/sweeps/run",
        json={"today": "2026-11-01", "user_id": user_id},
        headers=headers,
    )

    decision = response.json()["decision"]
    assert decision["state"] == "run-created"
    assert decision["run"]["status"] == "completed"
    assert Decimal(api.get("/vault/balance").json()["balance"]) == Decimal("0")

    again = api.post(
        "/internal/sweeps/run",
        json={"today": "2026-11-01", "user_id": user_id},
        headers=headers,
    )
    assert again.json()["decision"]["state"] == "existing"
    assert len(api.get("/sweeps/runs").json()["runs"]) == 1
