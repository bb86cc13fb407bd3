"""
Local stores for the record families the sync engine moves.

Each store is the engine's view of one local table: list rows changed since a
cursor, lazily assign the cross-device sync id, and apply rows that arrive
from other devices. Domain code elsewhere decides what to record; the small
creation helpers here are the write path it uses.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from timewellspent.models.records import (
    ConsumptionEntry, EarnedAchievement, LibraryItem, WalletTransaction,
)
from timewellspent.storage.database import SessionLocal, session_scope
from timewellspent.sync.clock import ensure_utc

logger = logging.getLogger(__name__)

LIBRARY_FIELDS = (
    "kind", "url", "app", "domain", "title", "note", "purpose", "price",
    "created_at", "updated_at", "last_used_at", "consumed_at", "deleted_at",
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncedRecordStore:
    """Shared list/ensure-id behaviour for tables keyed by `sync_id`."""

    model = None
    time_column: str = ""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def list_since(self, since: datetime) -> list:
        column = getattr(self.model, self.time_column)
        with session_scope(self._session_factory) as db:
            return db.query(self.model).filter(column >= since).order_by(column).all()

    def list_all(self) -> list:
        column = getattr(self.model, self.time_column)
        with session_scope(self._session_factory) as db:
            return db.query(self.model).order_by(column).all()

    def ensure_sync_id(self, local_id: int, device_id: Optional[str] = None) -> str:
        """Return the row's sync id, assigning one (and the origin device) if missing."""
        with session_scope(self._session_factory) as db:
            row = db.get(self.model, local_id)
            if row is None:
                raise KeyError(f"{self.model.__tablename__} row not found: {local_id}")
            if not row.sync_id:
                row.sync_id = str(uuid.uuid4())
            if device_id and not row.device_id:
                row.device_id = device_id
            return row.sync_id


class LedgerStore(SyncedRecordStore):
    model = WalletTransaction
    time_column = "ts"

    def record(
        self,
        type: str,
        amount: int,
        meta: Optional[dict] = None,
        ts: Optional[datetime] = None,
    ) -> WalletTransaction:
        with session_scope(self._session_factory) as db:
            tx = WalletTransaction(type=type, amount=amount, meta=meta or {}, ts=ts or _now())
            db.add(tx)
            db.flush()
            return tx

    def upsert_from_sync(self, sync_id: str, **fields: Any) -> bool:
        """Insert a remote ledger entry once. Returns False if already present."""
        with session_scope(self._session_factory) as db:
            if db.query(WalletTransaction.id).filter_by(sync_id=sync_id).first():
                return False
            db.add(WalletTransaction(sync_id=sync_id, **fields))
            return True

    def balance(self) -> int:
        total = 0
        for tx in self.list_all():
            total += -tx.amount if tx.type == "spend" else tx.amount
        return total


class LibraryStore(SyncedRecordStore):
    model = LibraryItem
    time_column = "updated_at"

    def add(self, kind: str, domain: str, **fields: Any) -> LibraryItem:
        created_at = fields.pop("created_at", None) or _now()
        updated_at = fields.pop("updated_at", None) or created_at
        with session_scope(self._session_factory) as db:
            item = LibraryItem(
                sync_id=str(uuid.uuid4()),
                kind=kind,
                domain=domain,
                created_at=created_at,
                updated_at=updated_at,
                **fields,
            )
            db.add(item)
            db.flush()
            return item

    def update(self, local_id: int, **fields: Any) -> LibraryItem:
        with session_scope(self._session_factory) as db:
            item = db.get(LibraryItem, local_id)
            if item is None:
                raise KeyError(f"Library item not found: {local_id}")
            for key, value in fields.items():
                setattr(item, key, value)
            if "updated_at" not in fields:
                item.updated_at = _now()
            return item

    def upsert_from_sync(self, sync_id: str, **fields: Any) -> bool:
        """Latest `updated_at` wins at row level. Returns False unless the incoming row is newer."""
        with session_scope(self._session_factory) as db:
            item = db.query(LibraryItem).filter_by(sync_id=sync_id).first()
            if item is None:
                db.add(LibraryItem(sync_id=sync_id, **fields))
                return True
            incoming = fields.get("updated_at")
            if incoming and item.updated_at and ensure_utc(item.updated_at) >= ensure_utc(incoming):
                return False
            for key in LIBRARY_FIELDS:
                if key in fields:
                    setattr(item, key, fields[key])
            if fields.get("device_id") and not item.device_id:
                item.device_id = fields["device_id"]
            return True


class ConsumptionStore(SyncedRecordStore):
    model = ConsumptionEntry
    time_column = "occurred_at"

    def log(
        self,
        kind: str,
        title: Optional[str] = None,
        url: Optional[str] = None,
        domain: Optional[str] = None,
        meta: Optional[dict] = None,
        occurred_at: Optional[datetime] = None,
    ) -> ConsumptionEntry:
        with session_scope(self._session_factory) as db:
            entry = ConsumptionEntry(
                sync_id=str(uuid.uuid4()),
                kind=kind,
                title=title,
                url=url,
                domain=domain,
                meta=meta,
                occurred_at=occurred_at or _now(),
            )
            db.add(entry)
            db.flush()
            return entry

    def upsert_from_sync(self, sync_id: str, **fields: Any) -> bool:
        with session_scope(self._session_factory) as db:
            if db.query(ConsumptionEntry.id).filter_by(sync_id=sync_id).first():
                return False
            db.add(ConsumptionEntry(sync_id=sync_id, **fields))
            return True


class AchievementStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def earn(
        self,
        achievement_id: str,
        earned_at: Optional[datetime] = None,
        meta: Optional[dict] = None,
    ) -> EarnedAchievement:
        with session_scope(self._session_factory) as db:
            row = db.get(EarnedAchievement, achievement_id)
            if row is None:
                row = EarnedAchievement(id=achievement_id, earned_at=earned_at or _now(), meta=meta)
                db.add(row)
            return row

    def list_earned(self) -> list[EarnedAchievement]:
        with session_scope(self._session_factory) as db:
            return db.query(EarnedAchievement).order_by(EarnedAchievement.earned_at).all()

    def list_earned_since(self, since: datetime) -> list[EarnedAchievement]:
        with session_scope(self._session_factory) as db:
            return (
                db.query(EarnedAchievement)
                .filter(EarnedAchievement.earned_at >= since)
                .order_by(EarnedAchievement.earned_at)
                .all()
            )

    def upsert_remote_earned(
        self,
        achievement_id: str,
        earned_at: datetime,
        meta: Optional[dict] = None,
    ) -> bool:
        """Keep the earliest earn time seen on any device."""
        with session_scope(self._session_factory) as db:
            row = db.get(EarnedAchievement, achievement_id)
            if row is None:
                db.add(EarnedAchievement(id=achievement_id, earned_at=earned_at, meta=meta))
                return True
            if ensure_utc(earned_at) < ensure_utc(row.earned_at):
                row.earned_at = earned_at
                if meta is not None:
                    row.meta = meta
                return True
            return False
