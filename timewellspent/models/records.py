"""
SQLAlchemy models for the locally-owned records that sync across devices.

- WalletTransaction: append-only ledger entries
- LibraryItem: saved links/apps, the only record family edited after creation
- ConsumptionEntry: append-only consumption log
- EarnedAchievement: one row per earned achievement id

`sync_id` is the cross-device identity of a row (the remote upsert key);
`id` is the local autoincrement key and never leaves the device.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Text, JSON, Index

from timewellspent.storage.database import Base, UTCDateTime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (Index("ix_wallet_ts", "ts"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_id = Column(String, unique=True, nullable=True)
    device_id = Column(String, nullable=True)
    ts = Column(UTCDateTime, default=_now, nullable=False)
    type = Column(String, nullable=False)  # earn | spend | adjust
    amount = Column(Integer, nullable=False)
    meta = Column(JSON, default=dict)


class LibraryItem(Base):
    __tablename__ = "library_items"
    __table_args__ = (Index("ix_library_updated", "updated_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_id = Column(String, unique=True, nullable=True)
    device_id = Column(String, nullable=True)
    kind = Column(String, nullable=False)  # url | app
    url = Column(String, nullable=True)
    app = Column(String, nullable=True)
    domain = Column(String, nullable=False)
    title = Column(String, nullable=True)
    note = Column(Text, nullable=True)
    purpose = Column(String, nullable=False, default="allow")
    price = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, default=_now, nullable=False)
    updated_at = Column(UTCDateTime, default=_now, nullable=False)
    last_used_at = Column(UTCDateTime, nullable=True)
    consumed_at = Column(UTCDateTime, nullable=True)
    deleted_at = Column(UTCDateTime, nullable=True)


class ConsumptionEntry(Base):
    __tablename__ = "consumption_log"
    __table_args__ = (Index("ix_consumption_occurred", "occurred_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sync_id = Column(String, unique=True, nullable=True)
    device_id = Column(String, nullable=True)
    occurred_at = Column(UTCDateTime, default=_now, nullable=False)
    kind = Column(String, nullable=False)  # e.g. "emergency-session"
    title = Column(String, nullable=True)
    url = Column(String, nullable=True)
    domain = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)


class EarnedAchievement(Base):
    __tablename__ = "achievements"

    id = Column(String, primary_key=True)  # achievement id, e.g. "deep-focus-10h"
    earned_at = Column(UTCDateTime, default=_now, nullable=False)
    meta = Column(JSON, nullable=True)
