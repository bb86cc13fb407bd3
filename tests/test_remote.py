"""Query replay onto the Supabase table builder, and error mapping."""

from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from postgrest import APIError
from postgrest.types import ReturnMethod

from timewellspent.sync.errors import NotConfiguredError, RemoteError
from timewellspent.sync.remote import Filter, RemoteStore


class RecordingTable:
    """Stands in for a Supabase request builder and records each chained call."""

    def __init__(self, data=None, error=None):
        self.calls = []
        self._data = [] if data is None else data
        self._error = error

    def __getattr__(self, name):
        def call(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return call

    async def execute(self):
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._data)


class RecordingClient:
    def __init__(self, table: RecordingTable):
        self.tables = []
        self._table = table

    def table(self, name):
        self.tables.append(name)
        return self._table


def _store(data=None, error=None):
    table = RecordingTable(data, error)
    client = RecordingClient(table)
    return RemoteStore(client=client), client, table


class TestReplay:
    @pytest.mark.asyncio
    async def test_select_with_filters(self):
        store, client, table = _store(data=[{"id": "1"}])

        rows = await (
            store.table("wallet_transactions")
            .select("id, ts")
            .eq("user_id", "u1")
            .gt("synced_at", datetime(2024, 3, 4, 12, tzinfo=timezone.utc))
            .in_("device_id", ["a", "b"])
            .order("synced_at")
            .limit(10)
            .execute()
        )

        assert rows == [{"id": "1"}]
        assert client.tables == ["wallet_transactions"]
        assert table.calls == [
            ("select", ("id,ts",), {}),
            ("eq", ("user_id", "u1"), {}),
            ("gt", ("synced_at", "2024-03-04T12:00:00+00:00"), {}),
            ("in_", ("device_id", ["a", "b"]), {}),
            ("order", ("synced_at",), {"desc": False}),
            ("limit", (10,), {}),
        ]

    @pytest.mark.asyncio
    async def test_or_groups(self):
        store, _, table = _store()

        await (
            store.table("friends")
            .select("id")
            .or_(
                [Filter("user_id", "eq", "a"), Filter("friend_id", "eq", "b")],
                [Filter("user_id", "eq", "b"), Filter("friend_id", "eq", "a")],
            )
            .execute()
        )

        assert table.calls[-1] == (
            "or_", ("and(user_id.eq.a,friend_id.eq.b),and(user_id.eq.b,friend_id.eq.a)",), {},
        )

    @pytest.mark.asyncio
    async def test_upsert_merges_without_returning_rows(self):
        store, _, table = _store()

        result = await store.table("achievements").upsert(
            [{"achievement_id": "x", "earned_at": datetime(2024, 1, 1, tzinfo=timezone.utc)}],
            on_conflict="user_id,achievement_id",
        ).execute()

        assert result == []
        assert table.calls == [(
            "upsert",
            ([{"achievement_id": "x", "earned_at": "2024-01-01T00:00:00+00:00"}],),
            {"on_conflict": "user_id,achievement_id", "returning": ReturnMethod.minimal},
        )]

    @pytest.mark.asyncio
    async def test_insert_returns_representation(self):
        store, _, table = _store(data=[{"id": "r1", "status": "pending"}])

        row = await store.table("friend_requests").insert({"status": "pending"}).maybe_single()

        assert row == {"id": "r1", "status": "pending"}
        assert table.calls == [
            ("insert", ({"status": "pending"},), {"returning": ReturnMethod.representation}),
        ]

    @pytest.mark.asyncio
    async def test_update_and_delete(self):
        store, _, table = _store()

        await store.table("friend_requests").update({"status": "accepted"}, returning=False).eq("id", "r1").execute()
        await store.table("friends").delete().eq("id", "f1").execute()

        assert table.calls == [
            ("update", ({"status": "accepted"},), {"returning": ReturnMethod.minimal}),
            ("eq", ("id", "r1"), {}),
            ("delete", (), {"returning": ReturnMethod.minimal}),
            ("eq", ("id", "f1"), {}),
        ]

    @pytest.mark.asyncio
    async def test_null_filter(self):
        store, _, table = _store()

        await store.table("library_items").select().eq("deleted_at", None).execute()

        assert table.calls[-1] == ("is_", ("deleted_at", "null"), {})

    @pytest.mark.asyncio
    async def test_single_object_response_is_wrapped(self):
        store, _, _ = _store(data={"id": "1"})
        assert await store.table("profiles").select().execute() == [{"id": "1"}]


class TestErrors:
    @pytest.mark.asyncio
    async def test_api_error_is_mapped(self):
        error = APIError({"code": "23505", "message": "duplicate key value", "details": None, "hint": None})
        store, _, _ = _store(error=error)

        with pytest.raises(RemoteError) as exc:
            await store.table("profiles").insert({"handle": "bob"}).execute()

        assert exc.value.code == "23505"
        assert exc.value.is_unique_violation
        assert str(exc.value) == "duplicate key value"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        store, _, _ = _store(error=httpx.ConnectError("offline"))

        with pytest.raises(RemoteError, match="offline"):
            await store.table("devices").select().execute()

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        store = RemoteStore(url="", anon_key="")
        assert not store.configured
        with pytest.raises(NotConfiguredError):
            await store.table("devices").select().execute()
