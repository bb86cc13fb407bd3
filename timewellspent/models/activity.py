"""
Activity samples produced by the watcher, and the hourly rollups built from them.
"""

import enum

from sqlalchemy import Column, String, Integer, Float, Index

from timewellspent.storage.database import Base, UTCDateTime


class ActivityCategory(str, enum.Enum):
    productive = "productive"
    neutral = "neutral"
    frivolity = "frivolity"
    idle = "idle"


# Dominant-category ties resolve to the first entry.
CATEGORY_PRIORITY = (
    ActivityCategory.productive,
    ActivityCategory.neutral,
    ActivityCategory.frivolity,
    ActivityCategory.idle,
)


class ActivitySample(Base):
    __tablename__ = "activities"
    __table_args__ = (Index("ix_activities_started", "started_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    started_at = Column(UTCDateTime, nullable=False)
    category = Column(String, nullable=True)  # None means uncategorised
    seconds_active = Column(Float, nullable=False, default=0)
    idle_seconds = Column(Float, nullable=False, default=0)
    source = Column(String, nullable=True)  # app | url


class ActivityRollup(Base):
    __tablename__ = "activity_rollups"

    device_id = Column(String, primary_key=True)
    hour_start = Column(UTCDateTime, primary_key=True)
    productive = Column(Integer, nullable=False, default=0)
    neutral = Column(Integer, nullable=False, default=0)
    frivolity = Column(Integer, nullable=False, default=0)
    idle = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime, nullable=False)
