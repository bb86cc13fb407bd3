"""
Record sync units, one per synchronized record family.

Every unit runs the same round trip for its stream:

  1. read the stream cursor (absent means full history, or the unit's lookback)
  2. collect local rows changed since the cursor, assigning sync ids lazily
  3. push them in fixed-size batches, upserted on the stream's key
  4. pull remote rows the server stamped (`synced_at`) after the cursor, oldest
     first, and apply the ones that did not originate on this device
  5. advance the cursor

Any failure raises out of `run_once` before step 5, so the next pass retries
the same window. Pushes are idempotent upserts and applies are idempotent
merges, so re-sending or re-pulling a row is harmless.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional, Sequence

from timewellspent.config.settings import settings
from timewellspent.sync.clock import EPOCH, Clock, ensure_utc, parse_timestamp, system_clock
from timewellspent.sync.cursors import CursorStore, Stream
from timewellspent.sync.models import SyncContext
from timewellspent.sync.schemas import (
    SELECT_ACHIEVEMENT, SELECT_CONSUMPTION, SELECT_LEDGER, SELECT_LIBRARY, SELECT_ROLLUP,
    AchievementRow, ConsumptionRow, LedgerRow, LibraryRow, RemoteRow, RollupRow,
)

logger = logging.getLogger(__name__)


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for i in range(0, len(items), size):
        yield items[i:i + size]


class RecordSyncUnit:
    """Push-then-pull round trip for one stream."""

    stream: Stream
    table: str
    conflict_target: str = "id"
    time_column: str
    # Set by the server on every write, so rows recorded offline are still pulled.
    pull_column: str = "synced_at"
    select_columns: str
    row_model: type[RemoteRow]
    # Rollups feed cross-device views, so rows from this device are applied too.
    apply_own_rows: bool = False
    # Append-only streams push only what this device recorded.
    push_any_origin: bool = False

    def __init__(
        self,
        store,
        remote,
        cursors: CursorStore,
        clock: Clock = system_clock,
        chunk_size: Optional[int] = None,
        cursor_strategy: Optional[str] = None,
        cursor_skew_seconds: Optional[int] = None,
    ):
        self.store = store
        self._remote = remote
        self._cursors = cursors
        self._clock = clock
        self._chunk_size = chunk_size or settings.sync_chunk_size
        self._cursor_strategy = cursor_strategy or settings.sync_cursor_strategy
        skew = settings.sync_cursor_skew_seconds if cursor_skew_seconds is None else cursor_skew_seconds
        self._cursor_skew = timedelta(seconds=skew)

    # ── Round trip ──────────────────────────────────────────────────

    async def run_once(self, ctx: SyncContext) -> dict:
        started = self._clock.now()
        previous = self._cursors.get(self.stream)
        since = previous or self.initial_cursor(started)

        outgoing = self.collect(ctx, since, started)
        pushed = await self.push(outgoing)
        self.after_push(outgoing)

        incoming = await self.pull(ctx, since)
        latest: Optional[datetime] = None
        to_apply = []
        skipped = 0
        for row in incoming:
            ts = self.row_time(row)
            if latest is None or ts > latest:
                latest = ts
            if not self.apply_own_rows and self.origin(row) == ctx.device_id:
                skipped += 1
                continue
            to_apply.append(row)
        applied = self.apply_all(to_apply)

        self._cursors.advance(self.stream, self.next_cursor(started, previous, latest))
        stats = {
            "pushed": pushed,
            "pulled": len(incoming),
            "applied": applied,
            "skipped_own": skipped,
        }
        logger.info("Stream %s synced: %s", self.stream.value, stats)
        return stats

    def initial_cursor(self, started: datetime) -> datetime:
        return EPOCH

    def next_cursor(
        self,
        started: datetime,
        previous: Optional[datetime],
        latest: Optional[datetime],
    ) -> Optional[datetime]:
        """Where the cursor goes after a successful round trip.

        wall_clock: the pass start time on this device's clock, compared
        with server `synced_at` stamps next pass; clock skew between the two
        can drop or repeat rows near the boundary.
        watermark: the newest server stamp seen (never behind the previous
        cursor) minus a safety skew; a few rows get re-pulled next pass.
        """
        if self._cursor_strategy == "wall_clock":
            return started
        if latest is None:
            return previous
        newest = max(latest, previous) if previous else latest
        return newest - self._cursor_skew

    # ── Push ────────────────────────────────────────────────────────

    def collect(self, ctx: SyncContext, since: datetime, started: datetime) -> list[RemoteRow]:
        rows = []
        for record in self.store.list_since(since):
            if not self.push_any_origin and record.device_id and record.device_id != ctx.device_id:
                continue  # arrived from another device
            sync_id = record.sync_id
            if not sync_id or not record.device_id:
                sync_id = self.store.ensure_sync_id(record.id, ctx.device_id)
            rows.append(self.to_row(record, sync_id, ctx))
        return rows

    def to_row(self, record, sync_id: str, ctx: SyncContext) -> RemoteRow:
        raise NotImplementedError

    async def push(self, rows: Sequence[RemoteRow]) -> int:
        payload = [row.to_payload() for row in rows]
        for batch in chunked(payload, self._chunk_size):
            await (
                self._remote.table(self.table)
                .upsert(batch, on_conflict=self.conflict_target)
                .execute()
            )
        return len(payload)

    def after_push(self, rows: Sequence[RemoteRow]) -> None:
        pass

    # ── Pull ────────────────────────────────────────────────────────

    def pull_query(self, ctx: SyncContext, since: datetime):
        return (
            self._remote.table(self.table)
            .select(self.select_columns)
            .eq("user_id", ctx.user_id)
            .gt(self.pull_column, since)
            .order(self.pull_column)
        )

    async def pull(self, ctx: SyncContext, since: datetime) -> list[RemoteRow]:
        rows = await self.pull_query(ctx, since).execute()
        return [self.row_model.model_validate(r) for r in rows]

    def row_time(self, row: RemoteRow) -> datetime:
        return getattr(row, "synced_at", None) or getattr(row, self.time_column)

    def origin(self, row: RemoteRow) -> Optional[str]:
        return getattr(row, "device_id", None)

    def apply_all(self, rows: Iterable[RemoteRow]) -> int:
        return sum(1 for row in rows if self.apply(row))

    def apply(self, row: RemoteRow) -> bool:
        raise NotImplementedError


class LedgerSync(RecordSyncUnit):
    stream = Stream.ledger
    table = "wallet_transactions"
    time_column = "ts"
    select_columns = SELECT_LEDGER
    row_model = LedgerRow

    def to_row(self, record, sync_id: str, ctx: SyncContext) -> LedgerRow:
        return LedgerRow(
            id=sync_id,
            user_id=ctx.user_id,
            device_id=record.device_id or ctx.device_id,
            ts=record.ts,
            type=record.type,
            amount=record.amount,
            meta=record.meta or {},
        )

    def apply(self, row: LedgerRow) -> bool:
        return self.store.upsert_from_sync(
            row.id,
            device_id=row.device_id,
            ts=row.ts,
            type=row.type,
            amount=row.amount,
            meta=row.meta,
        )


class LibrarySync(RecordSyncUnit):
    """Library items are editable from any device; the latest `updated_at` wins.

    Edits are pushed whichever device created the item, keeping the creating
    device as the row's origin, and pulled rows are applied even when that
    origin is this device.
    """

    stream = Stream.library
    table = "library_items"
    time_column = "updated_at"
    select_columns = SELECT_LIBRARY
    row_model = LibraryRow
    apply_own_rows = True
    push_any_origin = True

    def to_row(self, record, sync_id: str, ctx: SyncContext) -> LibraryRow:
        return LibraryRow(
            id=sync_id,
            user_id=ctx.user_id,
            device_id=record.device_id or ctx.device_id,
            kind=record.kind,
            url=record.url,
            app=record.app,
            domain=record.domain,
            title=record.title,
            note=record.note,
            purpose=record.purpose,
            price=record.price,
            created_at=record.created_at,
            updated_at=record.updated_at or record.created_at,
            last_used_at=record.last_used_at,
            consumed_at=record.consumed_at,
            deleted_at=record.deleted_at,
        )

    def apply(self, row: LibraryRow) -> bool:
        fields = row.model_dump(exclude={"id", "user_id", "synced_at"})
        return self.store.upsert_from_sync(row.id, **fields)


class ConsumptionSync(RecordSyncUnit):
    stream = Stream.consumption
    table = "consumption_log"
    time_column = "occurred_at"
    select_columns = SELECT_CONSUMPTION
    row_model = ConsumptionRow

    def to_row(self, record, sync_id: str, ctx: SyncContext) -> ConsumptionRow:
        return ConsumptionRow(
            id=sync_id,
            user_id=ctx.user_id,
            device_id=record.device_id or ctx.device_id,
            occurred_at=record.occurred_at,
            kind=record.kind,
            title=record.title,
            url=record.url,
            domain=record.domain,
            meta=record.meta,
        )

    def apply(self, row: ConsumptionRow) -> bool:
        return self.store.upsert_from_sync(
            row.id,
            device_id=row.device_id,
            occurred_at=row.occurred_at,
            kind=row.kind,
            title=row.title,
            url=row.url,
            domain=row.domain,
            meta=row.meta,
        )


class RollupSync(RecordSyncUnit):
    """Hourly rollups, keyed by (device_id, hour_start) rather than a sync id."""

    stream = Stream.rollups
    table = "activity_rollups"
    conflict_target = "device_id,hour_start"
    time_column = "updated_at"
    select_columns = SELECT_ROLLUP
    row_model = RollupRow
    apply_own_rows = True

    def __init__(self, store, remote, cursors, devices, lookback_days: Optional[int] = None, **kwargs):
        super().__init__(store, remote, cursors, **kwargs)
        self._devices = devices
        self._lookback = timedelta(days=lookback_days or settings.sync_rollup_lookback_days)

    def initial_cursor(self, started: datetime) -> datetime:
        return started - self._lookback

    def collect(self, ctx: SyncContext, since: datetime, started: datetime) -> list[RollupRow]:
        rollups = self.store.generate_local_rollups(ctx.device_id, since, started, updated_at=started)
        return [
            RollupRow(
                device_id=r.device_id,
                hour_start=r.hour_start,
                productive=r.productive,
                neutral=r.neutral,
                frivolity=r.frivolity,
                idle=r.idle,
                updated_at=r.updated_at,
            )
            for r in rollups
        ]

    def after_push(self, rows: Sequence[RollupRow]) -> None:
        if rows:
            self.store.upsert_rollups(rows)

    async def pull(self, ctx: SyncContext, since: datetime) -> list[RollupRow]:
        device_ids = list(await self._devices.user_device_ids(self._remote, [ctx.user_id]))
        if not device_ids:
            return []
        rows = await (
            self._remote.table(self.table)
            .select(self.select_columns)
            .in_("device_id", device_ids)
            .gt(self.pull_column, since)
            .order(self.pull_column)
            .execute()
        )
        return [RollupRow.model_validate(r) for r in rows]

    def apply_all(self, rows: Iterable[RollupRow]) -> int:
        return self.store.upsert_rollups(rows)


class AchievementSync(RecordSyncUnit):
    """Earned achievements, keyed by (user_id, achievement_id).

    The remote set per user is small, so every pull reads all of it; the
    earliest earn time across devices wins locally.
    """

    stream = Stream.achievements
    table = "achievements"
    conflict_target = "user_id,achievement_id"
    time_column = "earned_at"
    select_columns = SELECT_ACHIEVEMENT
    row_model = AchievementRow
    apply_own_rows = True

    def collect(self, ctx: SyncContext, since: datetime, started: datetime) -> list[AchievementRow]:
        return [
            AchievementRow(
                user_id=ctx.user_id,
                achievement_id=earned.id,
                earned_at=earned.earned_at,
                meta=earned.meta,
            )
            for earned in self.store.list_earned_since(since)
        ]

    async def push(self, rows: Sequence[AchievementRow]) -> int:
        if not rows:
            return 0
        existing = await (
            self._remote.table(self.table)
            .select("achievement_id, earned_at")
            .eq("user_id", rows[0].user_id)
            .execute()
        )
        remote_earned = {r["achievement_id"]: parse_timestamp(r["earned_at"]) for r in existing}
        # An upsert overwrites, so only send rows that are new or earlier than the remote copy.
        newer = [
            row for row in rows
            if row.achievement_id not in remote_earned
            or ensure_utc(row.earned_at) < remote_earned[row.achievement_id]
        ]
        return await super().push(newer)

    def pull_query(self, ctx: SyncContext, since: datetime):
        return (
            self._remote.table(self.table)
            .select(self.select_columns)
            .eq("user_id", ctx.user_id)
            .order(self.time_column)
        )

    def apply(self, row: AchievementRow) -> bool:
        return self.store.upsert_remote_earned(row.achievement_id, row.earned_at, row.meta)
