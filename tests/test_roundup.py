"""Round-up computation and ingestion tests."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from app.config import settings
from app.services.ledger_service import LedgerService, live_roundup_count
from app.services.roundup_service import (
    apply_monthly_cap,
    compute_roundup,
    is_transaction_excluded,
)
from app.services.settings_service import SettingsService
from app.services.transaction_service import TransactionService
from app.utils.errors import ConcurrencyConflictError, ValidationError


@pytest.mark.parametrize(
    ("amount", "currency", "expected"),
    [
        ("12.20", "EUR", "0.80"),
        ("-4.63", "EUR", "0.37"),
        ("5.00", "EUR", "0.00"),
        ("0.01", "EUR", "0.99"),
        ("1250", "JPY", "0"),
        ("3.1415", "KWD", "0.858"),
    ],
)
def test_compute_roundup(amount: str, currency: str, expected: str) -> None:
    assert compute_roundup(Decimal(amount), currency) == Decimal(expected)


def test_monthly_cap_truncates_and_exhausts() -> None:
    cap = Decimal("50")
    assert apply_monthly_cap(Decimal("0.80"), Decimal("49.50"), cap) == Decimal("0.50")
    assert apply_monthly_cap(Decimal("0.80"), Decimal("50.00"), cap) == Decimal("0")
    assert apply_monthly_cap(Decimal("0.80"), Decimal("51.00"), cap) == Decimal("0")


def test_exclusion_is_case_insensitive() -> None:
    categories = ["ATM Withdrawal", "Fee"]
    assert is_transaction_excluded("atm withdrawal", "Bank", categories)
    assert is_transaction_excluded("Groceries", " NETFLIX ", categories, ["Netflix"])
    assert not is_transaction_excluded("Groceries", "Lidl", categories, ["Netflix"])
    assert not is_transaction_excluded(None, None, categories)


def _tx(bank_account: dict, external_id: str, amount: str, **extra) -> dict:
    return {
        "external_id": external_id,
        "account_id": bank_account["id"],
        "amount": amount,
        "merchant_name": "Cafe",
        "category": "Food",
        **extra,
    }


def test_ingestion_is_idempotent(db, user_id, bank_account) -> None:
    service = TransactionService(db)
    first = service.ingest(user_id, _tx(bank_account, "ext-1", "12.20"))
    second = service.ingest(user_id, _tx(bank_account, "ext-1", "12.20"))

    assert first.created and not second.created
    assert first.roundup is not None and second.roundup is None
    assert len(db.rows("transactions", user_id=user_id)) == 1
    entries = db.rows("roundup_ledger", user_id=user_id)
    assert len(entries) == 1
    assert Decimal(entries[0]["amount"]) == Decimal("0.80")


def test_interrupted_evaluation_resumes_once(db, user_id, bank_account) -> None:
    row = db.seed(
        "transactions",
        user_id=user_id,
        account_id=bank_account["id"],
        external_id="ext-2",
        amount="4.63",
        currency="EUR",
        is_eligible_for_roundup=True,
        is_excluded=False,
        roundup_processed_at=None,
    )
    service = TransactionService(db)
    result = service.ingest(user_id, _tx(bank_account, "ext-2", "4.63"))
    again = service.ingest(user_id, _tx(bank_account, "ext-2", "4.63"))

    assert result.roundup is not None
    assert Decimal(result.roundup["amount"]) == Decimal("0.37")
    assert again.roundup is None
    assert len(LedgerService(db).entries_for_transaction(row["id"])) == 1


def test_monthly_cap_applies_across_transactions(db, user_id, bank_account, fund) -> None:
    fund(user_id, "49.50")
    service = TransactionService(db)

    capped = service.ingest(user_id, _tx(bank_account, "ext-a", "12.20"))
    exhausted = service.ingest(user_id, _tx(bank_account, "ext-b", "3.10"))

    assert Decimal(capped.roundup["amount"]) == Decimal("0.50")
    assert exhausted.roundup is None
    processed = db.rows("transactions", external_id="ext-b")[0]
    assert processed["roundup_processed_at"] is not None


def test_excluded_and_ineligible_transactions_get_no_roundup(db, user_id, bank_account) -> None:
    service = TransactionService(db)
    atm = service.ingest(user_id, _tx(bank_account, "ext-atm", "20.50", category="ATM Withdrawal"))
    ineligible = service.ingest(
        user_id, _tx(bank_account, "ext-pending", "7.25", is_eligible_for_roundup=False)
    )

    assert atm.transaction["is_excluded"] is True
    assert atm.roundup is None
    assert ineligible.roundup is None
    assert db.rows("roundup_ledger", user_id=user_id) == []


def test_merchant_override_excludes_future_transactions(db, user_id, bank_account) -> None:
    SettingsService(db).add_merchant_exclusion(user_id, "Casino Royale")
    result = TransactionService(db).ingest(
        user_id, _tx(bank_account, "ext-c", "9.90", merchant_name="casino royale")
    )
    assert result.roundup is None


def test_reclassification_reverses_then_reapplies(db, user_id, bank_account) -> None:
    service = TransactionService(db)
    result = service.ingest(user_id, _tx(bank_account, "ext-r", "12.20"))
    transaction_id = result.transaction["id"]

    service.update_classification(user_id, transaction_id, category="Bank Transfer")
    entries = LedgerService(db).entries_for_transaction(transaction_id)
    assert live_roundup_count(entries) == 0
    assert [e["entry_type"] for e in entries].count("roundup_correction") == 1

    service.update_classification(user_id, transaction_id, is_excluded=False)
    entries = LedgerService(db).entries_for_transaction(transaction_id)
    assert live_roundup_count(entries) == 1

    listed = service.list_transactions(user_id)
    assert listed[0]["roundup_amount"] == Decimal("0.80")


def test_unknown_account_is_rejected(db, user_id) -> None:
    with pytest.raises(ValidationError):
        TransactionService(db).ingest(
            user_id, {"external_id": "x", "account_id": "missing", "amount": "1.50"}
        )
    assert db.rows("transactions") == []


def _ingest_concurrently(db, user_id, payloads) -> list[str]:
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(len(payloads))

    def ingest(payload: dict) -> None:
        start.wait()
        try:
            TransactionService(db).ingest(user_id, payload)
            result = "ok"
        except ConcurrencyConflictError:
            result = "contended"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=ingest, args=(payload,)) for payload in payloads]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


def test_concurrent_deliveries_credit_one_roundup(db, user_id, bank_account) -> None:
    payload = _tx(bank_account, "ext-dup", "12.20")
    outcomes = _ingest_concurrently(db, user_id, [payload] * 8)

    assert len(outcomes) == 8
    assert len(db.rows("transactions", user_id=user_id)) == 1
    TransactionService(db).ingest(user_id, payload)
    entries = db.rows("roundup_ledger", user_id=user_id)
    assert len(entries) == 1
    assert Decimal(entries[0]["amount"]) == Decimal("0.80")


def test_redelivery_during_credit_cannot_double_credit(
    db, user_id, bank_account, monkeypatch
) -> None:
    monkeypatch.setattr(settings, "user_lock_attempts", 2)
    monkeypatch.setattr(settings, "user_lock_retry_delay_ms", 0)
    payload = _tx(bank_account, "ext-re", "12.20")
    service = TransactionService(db)
    redelivery = TransactionService(db)
    refused: list[Exception] = []
    credit = service.roundups._credit

    def credit_after_redelivery(transaction):
        try:
            redelivery.ingest(user_id, payload)
        except ConcurrencyConflictError as exc:
            refused.append(exc)
        return credit(transaction)

    monkeypatch.setattr(service.roundups, "_credit", credit_after_redelivery)
    result = service.ingest(user_id, payload)

    assert len(refused) == 1
    assert Decimal(result.roundup["amount"]) == Decimal("0.80")
    entries = LedgerService(db).entries_for_transaction(result.transaction["id"])
    assert live_roundup_count(entries) == 1


def test_concurrent_transactions_respect_monthly_cap(db, user_id, bank_account, fund) -> None:
    fund(user_id, "49.50")
    payloads = [_tx(bank_account, f"ext-cap-{n}", "12.20") for n in range(6)]
    _ingest_concurrently(db, user_id, payloads)

    accrued = sum(
        (Decimal(e["amount"]) for e in db.rows("roundup_ledger", user_id=user_id)),
        Decimal("0"),
    )
    assert accrued == Decimal("50.00")
