"""Per-user lease lock tests."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.config import settings
from app.services.lock_service import LockService
from app.utils.errors import ConcurrencyConflictError
from app.utils.time import now_utc


@pytest.fixture
def fast_locks(monkeypatch):
    monkeypatch.setattr(settings, "user_lock_attempts", 2)
    monkeypatch.setattr(settings, "user_lock_retry_delay_ms", 0)


def test_second_holder_is_rejected(db, user_id, fast_locks) -> None:
    locks = LockService(db)
    holder = locks.acquire(user_id, "withdrawal")

    with pytest.raises(ConcurrencyConflictError) as excinfo:
        locks.acquire(user_id, "sweep")
    assert excinfo.value.status_code == 409

    locks.release(user_id, holder)
    assert locks.acquire(user_id, "sweep")


def test_locks_are_per_user(db, fast_locks) -> None:
    locks = LockService(db)
    locks.acquire("user-a", "withdrawal")
    assert locks.acquire("user-b", "withdrawal")


def test_expired_lease_is_taken_over(db, user_id, fast_locks) -> None:
    db.seed(
        "user_locks",
        user_id=user_id,
        holder="crashed-worker",
        purpose="withdrawal",
        expires_at=(now_utc() - timedelta(seconds=1)).isoformat(),
    )
    holder = LockService(db).acquire(user_id, "withdrawal")

    rows = db.rows("user_locks", user_id=user_id)
    assert [row["holder"] for row in rows] == [holder]


def test_hold_releases_on_error(db, user_id, fast_locks) -> None:
    locks = LockService(db)
    with pytest.raises(RuntimeError):
        with locks.hold(user_id, "withdrawal"):
            raise RuntimeError("boom")
    assert db.rows("user_locks") == []


def test_release_ignores_foreign_holder(db, user_id, fast_locks) -> None:
    locks = LockService(db)
    holder = locks.acquire(user_id, "withdrawal")
    locks.release(user_id, "someone-else")
    assert [row["holder"] for row in db.rows("user_locks")] == [holder]
