"""
Row-oriented remote store client on the Supabase Python client.

Callers describe a request as a `Query` (table, verb, filters, ordering,
body) and `RemoteStore.execute` replays it onto the Supabase table builder:

    remote.table("wallet_transactions").select("id, ts").eq("user_id", uid).gt("synced_at", since)

The Supabase client is created on first use and persists its auth session in
the local settings store, so requests carry the signed-in user's token and
row-level policies scope what each user can read and write.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence, Union

import httpx
from postgrest import APIError
from postgrest.types import ReturnMethod
from supabase import AsyncClient, AsyncClientOptions, acreate_client

from timewellspent.config.settings import settings
from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.auth import SettingsSessionStorage
from timewellspent.sync.clock import to_iso
from timewellspent.sync.errors import NotConfiguredError, RemoteError

logger = logging.getLogger(__name__)


def encode_value(value: Any) -> Any:
    """JSON-safe value: datetimes become ISO-8601 UTC strings."""
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def _literal(value: Any) -> str:
    value = encode_value(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class Filter:
    column: str
    op: str  # eq | neq | gt | gte | lt | lte | in
    value: Any

    def apply(self, request):
        if self.op == "in":
            return request.in_(self.column, [_literal(v) for v in self.value])
        if self.value is None:
            return request.is_(self.column, "null")
        return getattr(request, self.op)(self.column, _literal(self.value))

    def expression(self) -> str:
        """`column.op.value` form used inside an `or` group."""
        if self.op == "in":
            return f"{self.column}.in.({','.join(_literal(v) for v in self.value)})"
        if self.value is None:
            return f"{self.column}.is.null"
        return f"{self.column}.{self.op}.{_literal(self.value)}"


def _or_expression(groups: list[list[Filter]]) -> str:
    parts = []
    for group in groups:
        if len(group) == 1:
            parts.append(group[0].expression())
        else:
            parts.append(f"and({','.join(f.expression() for f in group)})")
    return ",".join(parts)


@dataclass
class Query:
    """A single table request under construction."""

    remote: Any
    table: str
    method: str = "GET"
    columns: str = "*"
    filters: list[Filter] = field(default_factory=list)
    any_of: list[list[list[Filter]]] = field(default_factory=list)
    order_by: Optional[tuple[str, bool]] = None
    row_limit: Optional[int] = None
    body: Any = None
    on_conflict: Optional[str] = None
    returning: bool = False

    # ── Verbs ────────────────────────────────────────────────────────

    def select(self, columns: str = "*") -> "Query":
        self.method = "GET"
        self.columns = "".join(columns.split())
        return self

    def insert(self, rows: Any, returning: bool = True) -> "Query":
        self.method = "POST"
        self.body = encode_value(rows)
        self.returning = returning
        return self

    def upsert(self, rows: Sequence[dict], on_conflict: str) -> "Query":
        self.method = "POST"
        self.body = encode_value(list(rows))
        self.on_conflict = on_conflict
        return self

    def update(self, values: dict, returning: bool = True) -> "Query":
        self.method = "PATCH"
        self.body = encode_value(values)
        self.returning = returning
        return self

    def delete(self) -> "Query":
        self.method = "DELETE"
        return self

    # ── Filters ──────────────────────────────────────────────────────

    def _where(self, column: str, op: str, value: Any) -> "Query":
        self.filters.append(Filter(column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self._where(column, "eq", value)

    def neq(self, column: str, value: Any) -> "Query":
        return self._where(column, "neq", value)

    def gt(self, column: str, value: Any) -> "Query":
        return self._where(column, "gt", value)

    def gte(self, column: str, value: Any) -> "Query":
        return self._where(column, "gte", value)

    def lt(self, column: str, value: Any) -> "Query":
        return self._where(column, "lt", value)

    def in_(self, column: str, values: Sequence[Any]) -> "Query":
        return self._where(column, "in", list(values))

    def or_(self, *groups: Union[Filter, Sequence[Filter]]) -> "Query":
        """Match rows satisfying every filter of at least one group."""
        self.any_of.append([[g] if isinstance(g, Filter) else list(g) for g in groups])
        return self

    def order(self, column: str, ascending: bool = True) -> "Query":
        self.order_by = (column, ascending)
        return self

    def limit(self, n: int) -> "Query":
        self.row_limit = n
        return self

    # ── Execution ────────────────────────────────────────────────────

    async def execute(self) -> list[dict]:
        return await self.remote.execute(self)

    async def maybe_single(self) -> Optional[dict]:
        if self.method == "GET" and self.row_limit is None:
            self.row_limit = 1
        rows = await self.execute()
        return rows[0] if rows else None

    def build(self, table):
        """Replay this query onto a Supabase table request builder."""
        returning = ReturnMethod.representation if self.returning else ReturnMethod.minimal
        if self.method == "GET":
            request = table.select(self.columns)
        elif self.method == "POST" and self.on_conflict:
            request = table.upsert(self.body, on_conflict=self.on_conflict, returning=ReturnMethod.minimal)
        elif self.method == "POST":
            request = table.insert(self.body, returning=returning)
        elif self.method == "PATCH":
            request = table.update(self.body, returning=returning)
        else:
            request = table.delete(returning=ReturnMethod.minimal)
        for f in self.filters:
            request = f.apply(request)
        for groups in self.any_of:
            request = request.or_(_or_expression(groups))
        if self.order_by:
            column, ascending = self.order_by
            request = request.order(column, desc=not ascending)
        if self.row_limit is not None:
            request = request.limit(self.row_limit)
        return request


class RemoteStore:
    """Shared remote store, reached through one lazily created Supabase client."""

    def __init__(
        self,
        storage: Optional[SettingsStore] = None,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[AsyncClient] = None,
    ):
        self._storage = storage
        self._url = (url or settings.supabase_url or "").rstrip("/")
        self._anon_key = anon_key or settings.supabase_anon_key
        self._timeout = timeout or settings.sync_http_timeout_seconds
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._url and self._anon_key)

    async def client(self) -> AsyncClient:
        if self._client is None:
            if not self.configured:
                raise NotConfiguredError()
            async with self._lock:
                if self._client is None:
                    self._client = await acreate_client(self._url, self._anon_key, options=self._options())
                    logger.info("Connected to remote store at %s", self._url)
        return self._client

    def _options(self) -> AsyncClientOptions:
        options = AsyncClientOptions(
            flow_type="pkce",
            auto_refresh_token=False,
            persist_session=True,
            postgrest_client_timeout=self._timeout,
        )
        if self._storage is not None:
            options.storage = SettingsSessionStorage(self._storage, settings.sync_auth_storage_key)
        return options

    def table(self, name: str) -> Query:
        return Query(remote=self, table=name)

    async def execute(self, query: Query) -> list[dict]:
        client = await self.client()
        request = query.build(client.table(query.table))
        try:
            response = await request.execute()
        except APIError as e:
            logger.debug("Remote %s %s rejected (%s): %s", query.method, query.table, e.code, e.message)
            raise RemoteError(e.message or f"{query.method} {query.table} failed", code=e.code) from e
        except httpx.HTTPError as e:
            raise RemoteError(f"{query.method} {query.table} failed: {e}") from e

        data = response.data
        if not data:
            return []
        return data if isinstance(data, list) else [data]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.postgrest.aclose()
            self._client = None
