"""
Pytest fixtures for the sync engine tests.

`FakeRemote` executes the same `Query` objects `RemoteStore` hands to the
Supabase client, against in-memory tables, so units, housekeeping and the
friend graph run unchanged. Like the server it stamps `synced_at` on every
write to a synced table and refuses library rows older than the stored copy.
Each simulated device gets its own in-memory SQLite store.
"""

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from timewellspent.models.activity import ActivityRollup
from timewellspent.models.records import LibraryItem
from timewellspent.storage.database import make_session_factory, session_scope
from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.clock import Clock, parse_timestamp, to_iso
from timewellspent.sync.engine import SyncEngine
from timewellspent.sync.errors import UNIQUE_VIOLATION, RemoteError
from timewellspent.sync.models import AuthSession, AuthUser
from timewellspent.sync.remote import Filter, Query

T0 = datetime(2024, 3, 4, 12, 30, tzinfo=timezone.utc)

_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}")

# Primary / conflict keys per table.
PRIMARY_KEYS = {
    "activity_rollups": ("device_id", "hour_start"),
    "achievements": ("user_id", "achievement_id"),
    "profiles": ("user_id",),
}
GENERATED_IDS = {"friend_requests", "friends"}
SYNCED_TABLES = {"wallet_transactions", "library_items", "consumption_log", "activity_rollups"}
# Upserts that would move these columns backwards are ignored.
MONOTONIC_COLUMNS = {"library_items": "updated_at"}


def _pair(a, b):
    return frozenset((a, b))


UNIQUE_CONSTRAINTS = {
    "profiles": [lambda r: r.get("handle")],
    "friends": [lambda r: _pair(r.get("user_id"), r.get("friend_id"))],
    "friend_requests": [
        lambda r: _pair(r.get("requester_id"), r.get("recipient_id")) if r.get("status") == "pending" else None,
    ],
}


def _plain(value):
    return to_iso(value) if isinstance(value, datetime) else value


def _comparable(value):
    if isinstance(value, str) and _TIMESTAMP.match(value):
        return parse_timestamp(value)
    return value


class FrozenClock(Clock):
    def __init__(self, now: datetime = T0):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeRemote:
    """In-memory PostgREST stand-in."""

    configured = True

    def __init__(self, clock: Optional[Clock] = None):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.requests: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self._clock = clock or FrozenClock()

    def table(self, name: str) -> Query:
        return Query(remote=self, table=name)

    def fail(self, method: str, table: str, error: Optional[Exception] = None) -> None:
        self.failures[(method, table)] = error or RemoteError("remote unavailable", status_code=503)

    def rows(self, table: str) -> list[dict]:
        return [dict(r) for r in self.tables[table]]

    async def aclose(self) -> None:
        pass

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self, query: Query) -> list[dict]:
        self.requests.append((query.method, query.table))
        failure = self.failures.get((query.method, query.table))
        if failure is not None:
            raise failure
        if query.method == "GET":
            return self._select(query)
        if query.method == "POST":
            return self._write(query)
        if query.method == "PATCH":
            return self._update(query)
        if query.method == "DELETE":
            return self._delete(query)
        raise AssertionError(f"unexpected method {query.method}")

    def _matches(self, row: dict, query: Query) -> bool:
        if not all(self._match(row, f) for f in query.filters):
            return False
        for groups in query.any_of:
            if not any(all(self._match(row, f) for f in group) for group in groups):
                return False
        return True

    def _match(self, row: dict, f: Filter) -> bool:
        actual = _comparable(row.get(f.column))
        if f.op == "in":
            return actual in [_comparable(_plain(v)) for v in f.value]
        expected = _comparable(_plain(f.value))
        if f.op == "eq":
            return actual == expected
        if f.op == "neq":
            return actual != expected
        if actual is None:
            return False
        if f.op == "gt":
            return actual > expected
        if f.op == "gte":
            return actual >= expected
        if f.op == "lt":
            return actual < expected
        raise AssertionError(f"unexpected op {f.op}")

    def _project(self, row: dict, columns: str) -> dict:
        if columns == "*":
            return dict(row)
        names = [c.strip() for c in columns.split(",")]
        return {c: row.get(c) for c in names}

    def _select(self, query: Query) -> list[dict]:
        rows = [r for r in self.tables[query.table] if self._matches(r, query)]
        if query.order_by:
            column, ascending = query.order_by
            rows.sort(key=lambda r: (r.get(column) is None, _comparable(r.get(column))), reverse=not ascending)
        if query.row_limit is not None:
            rows = rows[:query.row_limit]
        return [self._project(r, query.columns) for r in rows]

    def _key(self, table: str, row: dict) -> tuple:
        return tuple(_comparable(row.get(c)) for c in PRIMARY_KEYS.get(table, ("id",)))

    def _check_unique(self, table: str, candidate: dict, existing: Optional[dict] = None) -> None:
        for constraint in UNIQUE_CONSTRAINTS.get(table, []):
            value = constraint(candidate)
            if value is None:
                continue
            for row in self.tables[table]:
                if row is existing or self._key(table, row) == self._key(table, candidate):
                    continue
                if constraint(row) == value:
                    raise RemoteError(
                        "duplicate key value violates unique constraint",
                        status_code=409, code=UNIQUE_VIOLATION,
                    )

    def _defaults(self, table: str, row: dict) -> dict:
        row = dict(row)
        if table in GENERATED_IDS and not row.get("id"):
            row["id"] = str(uuid.uuid4())
        if table in ("friend_requests", "friends", "profiles", "devices"):
            row.setdefault("created_at", to_iso(self._clock.now()))
        return row

    def _stamp(self, table: str, row: dict) -> dict:
        if table in SYNCED_TABLES:
            row["synced_at"] = to_iso(self._clock.now())
        return row

    def _is_stale(self, table: str, existing: dict, incoming: dict) -> bool:
        column = MONOTONIC_COLUMNS.get(table)
        if column is None or not existing.get(column) or not incoming.get(column):
            return False
        return _comparable(incoming[column]) < _comparable(existing[column])

    def _write(self, query: Query) -> list[dict]:
        body = query.body if isinstance(query.body, list) else [query.body]
        written = []
        for incoming in body:
            row = self._defaults(query.table, incoming)
            key = self._key(query.table, row)
            existing = next((r for r in self.tables[query.table] if self._key(query.table, r) == key), None)
            if existing is not None and not query.on_conflict:
                raise RemoteError("duplicate key value violates unique constraint",
                                  status_code=409, code=UNIQUE_VIOLATION)
            if existing is not None:
                if self._is_stale(query.table, existing, incoming):
                    continue
                merged = {**existing, **incoming}
                self._check_unique(query.table, merged, existing)
                existing.update(self._stamp(query.table, dict(incoming)))
                written.append(dict(existing))
            else:
                self._check_unique(query.table, row)
                self.tables[query.table].append(self._stamp(query.table, row))
                written.append(dict(row))
        return written if query.returning else []

    def _update(self, query: Query) -> list[dict]:
        updated = []
        for row in self.tables[query.table]:
            if self._matches(row, query):
                self._check_unique(query.table, {**row, **query.body}, row)
                row.update(self._stamp(query.table, dict(query.body)))
                updated.append(dict(row))
        return updated if query.returning else []

    def _delete(self, query: Query) -> list[dict]:
        self.tables[query.table] = [r for r in self.tables[query.table] if not self._matches(r, query)]
        return []


class FakeAuth:
    """Signed-in session for one user; `session = None` signs out."""

    def __init__(self, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None):
        self.session: Optional[AuthSession] = AuthSession(
            access_token=f"token-{user_id}",
            refresh_token=None,
            expires_at=None,
            user=AuthUser(id=user_id, email=email or f"{user_id}@example.com", full_name=full_name),
        )
        self.signed_out = False

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    async def sign_in_url(self, provider: str, redirect_to: Optional[str] = None) -> str:
        return f"https://auth.example/authorize?provider={provider}"

    async def exchange_code(self, code: str) -> AuthSession:
        return self.session

    async def sign_out(self) -> None:
        self.session = None
        self.signed_out = True


class Device:
    """One simulated installation: local store + engine sharing a remote."""

    def __init__(self, remote: FakeRemote, auth: FakeAuth, clock: FrozenClock):
        self.factory = make_session_factory("sqlite://")
        self.storage = SettingsStore(self.factory)
        self.auth = auth
        self.engine = SyncEngine(
            session_factory=self.factory,
            storage=self.storage,
            auth=auth,
            remote=remote,
            clock=clock,
        )
        self.ledger, self.library, self.consumption, self.rollups, self.achievements = (
            unit.store for unit in self.engine.units
        )

    @property
    def id(self) -> str:
        return self.engine.devices.resolve().id

    def library_item(self, sync_id: str) -> Optional[LibraryItem]:
        with session_scope(self.factory) as db:
            return db.query(LibraryItem).filter_by(sync_id=sync_id).first()

    def rollup_rows(self) -> list[ActivityRollup]:
        with session_scope(self.factory) as db:
            return db.query(ActivityRollup).order_by(ActivityRollup.hour_start, ActivityRollup.device_id).all()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def remote(clock):
    return FakeRemote(clock)


@pytest.fixture
def make_device(remote, clock):
    def _make(user_id: str = "user-a", auth: Optional[FakeAuth] = None) -> Device:
        return Device(remote, auth or FakeAuth(user_id), clock)
    return _make


@pytest.fixture
def session_factory():
    return make_session_factory("sqlite://")


@pytest.fixture
def settings_store(session_factory):
    return SettingsStore(session_factory)
