"""Pytest fixtures for backend tests."""

from __future__ import annotations

import os
import threading
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from postgrest import APIError


def _set_default_env() -> None:
    os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
    os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
    os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
    os.environ.setdefault("ENABLE_SCHEDULER", "false")
    os.environ.setdefault("INTERNAL_API_TOKEN", "internal-test-token")
    os.environ.setdefault("USER_LOCK_RETRY_DELAY_MS", "5")
    os.environ.setdefault("USER_LOCK_ATTEMPTS", "200")


# Test modules import app settings at collection time.
_set_default_env()


class FakeResponse:
    def __init__(self, data: Any, count: int | None = None) -> None:
        self.data = data
        self.count = count


def _comparable(value: Any) -> Any:
    """Make ISO timestamps/dates comparable regardless of their string form."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _plain(value: Any) -> Any:
    # StrEnum members compare equal to their values; keep stored rows JSON-like.
    if isinstance(value, str):
        return str(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    return value


class FakeQuery:
    """Chainable stand-in for the postgrest request builder."""

    def __init__(self, client: FakeSupabaseClient, table: str) -> None:
        self.client = client
        self.table_name = table
        self.operation = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.order_by: tuple[str, bool] | None = None
        self.limit_value: int | None = None
        self.offset_value = 0
        self.count_mode: str | None = None
        self.head = False

    def select(self, *columns: str, count: str | None = None, head: bool = False) -> FakeQuery:
        self.count_mode = count
        self.head = head
        return self

    def insert(self, payload: dict[str, Any] | list[dict[str, Any]]) -> FakeQuery:
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> FakeQuery:
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self) -> FakeQuery:
        self.operation = "delete"
        return self

    def _filter(self, op: str, column: str, value: Any) -> FakeQuery:
        self.filters.append((op, column, value))
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        return self._filter("eq", column, value)

    def neq(self, column: str, value: Any) -> FakeQuery:
        return self._filter("neq", column, value)

    def gt(self, column: str, value: Any) -> FakeQuery:
        return self._filter("gt", column, value)

    def gte(self, column: str, value: Any) -> FakeQuery:
        return self._filter("gte", column, value)

    def lt(self, column: str, value: Any) -> FakeQuery:
        return self._filter("lt", column, value)

    def lte(self, column: str, value: Any) -> FakeQuery:
        return self._filter("lte", column, value)

    def in_(self, column: str, values: list[Any]) -> FakeQuery:
        return self._filter("in", column, list(values))

    def is_(self, column: str, value: Any) -> FakeQuery:
        return self._filter("is", column, value)

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self.order_by = (column, desc)
        return self

    def limit(self, size: int) -> FakeQuery:
        self.limit_value = size
        return self

    def offset(self, size: int) -> FakeQuery:
        self.offset_value = size
        return self

    def matches(self, row: dict[str, Any]) -> bool:
        for op, column, value in self.filters:
            current = row.get(column)
            if op == "eq" and _plain(current) != _plain(value):
                return False
            if op == "neq" and _plain(current) == _plain(value):
                return False
            if op == "in" and _plain(current) not in [_plain(v) for v in value]:
                return False
            if op == "is" and str(value).lower() == "null" and current is not None:
                return False
            if op in ("gt", "gte", "lt", "lte"):
                if current is None:
                    return False
                left, right = _comparable(current), _comparable(value)
                if op == "gt" and not left > right:
                    return False
                if op == "gte" and not left >= right:
                    return False
                if op == "lt" and not left < right:
                    return False
                if op == "lte" and not left <= right:
                    return False
        return True

    def execute(self) -> FakeResponse:
        return self.client.run(self)


class FakeRpc:
    """Stand-in for ``client.rpc(name, params)``."""

    def __init__(self, client: FakeSupabaseClient, name: str, params: dict[str, Any]) -> None:
        self.client = client
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        return self.client.call(self.name, self.params)


class FakeSupabaseClient:
    """In-memory Supabase client with unique constraints and failure injection."""

    UNIQUE_KEYS: dict[str, tuple[tuple[str, ...], ...]] = {
        "transactions": (("user_id", "external_id"),),
        "sweep_runs": (("user_id", "scheduled_for"),),
        "sweep_settings": (("user_id",),),
        "user_locks": (("user_id",),),
        "withdrawals": (("reference_number",),),
    }

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.failures: list[tuple[str, str, Exception]] = []
        self._lock = threading.RLock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        """Insert a row directly, bypassing failure injection."""
        with self._lock:
            stored = {key: _plain(value) for key, value in row.items()}
            stored.setdefault("id", str(uuid.uuid4()))
            self.tables[table].append(stored)
            return dict(stored)

    def rows(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        with self._lock:
            return [
                dict(row)
                for row in self.tables[table]
                if all(_plain(row.get(k)) == _plain(v) for k, v in filters.items())
            ]

    def patch(self, table: str, row_id: str, **fields: Any) -> None:
        """Mutate a stored row in place, e.g. to age a timestamp."""
        with self._lock:
            for row in self.tables[table]:
                if row["id"] == row_id:
                    row.update({key: _plain(value) for key, value in fields.items()})

    def fail_next(self, table: str, operation: str, error: Exception | None = None) -> None:
        """Make the next ``operation`` on ``table`` raise."""
        exc = error or APIError({"message": "simulated failure", "code": "XX000"})
        self.failures.append((table, operation, exc))

    def run(self, query: FakeQuery) -> FakeResponse:
        with self._lock:
            for index, (table, operation, exc) in enumerate(self.failures):
                if table == query.table_name and operation == query.operation:
                    del self.failures[index]
                    raise exc
            handler = getattr(self, f"_{query.operation}")
            return handler(query)

    def rpc(self, name: str, params: dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def call(self, name: str, params: dict[str, Any]) -> FakeResponse:
        """Run a database function; its writes roll back together on error."""
        with self._lock:
            for index, (table, operation, exc) in enumerate(self.failures):
                if table == name and operation == "rpc":
                    del self.failures[index]
                    raise exc
            snapshot = {table: [dict(row) for row in rows] for table, rows in self.tables.items()}
            try:
                return getattr(self, f"_rpc_{name}")(params)
            except Exception:
                self.tables = defaultdict(list, snapshot)
                raise

    def _rpc_reserve_withdrawal(self, params: dict[str, Any]) -> FakeResponse:
        now = datetime.now(UTC).isoformat()
        withdrawal = (
            self.table("withdrawals")
            .insert(
                {
                    "user_id": params["p_user_id"],
                    "amount": params["p_amount"],
                    "currency": params["p_currency"],
                    "destination_account_id": params["p_destination_account_id"],
                    "status": "pending",
                    "reference_number": params["p_reference_number"],
                    "provider_reference": None,
                    "failure_reason": None,
                    "initiated_at": now,
                    "completed_at": None,
                }
            )
            .execute()
            .data[0]
        )
        self.table("roundup_ledger").insert(
            {
                "user_id": params["p_user_id"],
                "entry_type": "withdrawal_reservation",
                "amount": params["p_amount"],
                "currency": params["p_currency"],
                "is_reversal": True,
                "transaction_id": None,
                "withdrawal_id": withdrawal["id"],
                "sweep_run_id": None,
                "created_at": now,
            }
        ).execute()
        return FakeResponse([withdrawal])

    def _select(self, query: FakeQuery) -> FakeResponse:
        rows = [dict(row) for row in self.tables[query.table_name] if query.matches(row)]
        total = len(rows)
        if query.order_by:
            column, desc = query.order_by
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: _comparable(row[column]), reverse=desc)
            rows = present + missing
        rows = rows[query.offset_value :]
        if query.limit_value is not None:
            rows = rows[: query.limit_value]
        if query.head:
            return FakeResponse([], count=total)
        return FakeResponse(rows, count=total if query.count_mode else None)

    def _insert(self, query: FakeQuery) -> FakeResponse:
        payloads = query.payload if isinstance(query.payload, list) else [query.payload]
        table = self.tables[query.table_name]
        created = []
        for payload in payloads:
            row = {key: _plain(value) for key, value in payload.items()}
            row.setdefault("id", str(uuid.uuid4()))
            for columns in self.UNIQUE_KEYS.get(query.table_name, ()):
                for existing in table:
                    if all(existing.get(c) == row.get(c) for c in columns):
                        raise APIError(
                            {
                                "message": "duplicate key value violates unique constraint",
                                "code": "23505",
                                "details": f"Key ({', '.join(columns)}) already exists.",
                                "hint": None,
                            }
                        )
            table.append(row)
            created.append(dict(row))
        return FakeResponse(created)

    def _update(self, query: FakeQuery) -> FakeResponse:
        updated = []
        for row in self.tables[query.table_name]:
            if query.matches(row):
                row.update({key: _plain(value) for key, value in query.payload.items()})
                updated.append(dict(row))
        return FakeResponse(updated)

    def _delete(self, query: FakeQuery) -> FakeResponse:
        table = self.tables[query.table_name]
        removed = [row for row in table if query.matches(row)]
        self.tables[query.table_name] = [row for row in table if not query.matches(row)]
        return FakeResponse(removed)


@pytest.fixture(scope="session")
def client() -> TestClient:
    """Create a FastAPI test client."""
    _set_default_env()
    from app.main import app

    return TestClient(app)


@pytest.fixture
def db() -> FakeSupabaseClient:
    return FakeSupabaseClient()


@pytest.fixture
def broker():
    from app.providers.sandbox import SandboxBroker

    return SandboxBroker()


@pytest.fixture
def payout():
    from app.providers.sandbox import SandboxPayout

    return SandboxPayout()


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def bank_account(db: FakeSupabaseClient, user_id: str) -> dict[str, Any]:
    return db.seed("bank_accounts", user_id=user_id, currency="EUR", iban_last4="4242")


@pytest.fixture
def fund(db: FakeSupabaseClient) -> Callable[[str, str], dict[str, Any]]:
    """Credit a user's vault with a plain round-up entry."""
    from app.services.ledger_service import LedgerService
    from app.services.status import EntryType

    def _fund(owner: str, amount: str) -> dict[str, Any]:
        return LedgerService(db).append(
            user_id=owner,
            entry_type=EntryType.ROUNDUP,
            amount=Decimal(amount),
            currency="EUR",
        )

    return _fund


@pytest.fixture
def api(
    client: TestClient,
    db: FakeSupabaseClient,
    broker,
    payout,
    user_id: str,
) -> Iterator[TestClient]:
    """Test client wired to the fake database, sandbox providers and ``user_id``."""
    from app import dependencies
    from app.main import app

    app.dependency_overrides[dependencies.get_db_client] = lambda: db
    app.dependency_overrides[dependencies.get_broker] = lambda: broker
    app.dependency_overrides[dependencies.get_payout] = lambda: payout
    app.dependency_overrides[dependencies.require_user_id] = lambda: user_id
    try:
        yield client
    finally:
        app.dependency_overrides.clear()
