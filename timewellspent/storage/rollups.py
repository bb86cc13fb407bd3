"""
Hourly activity rollups.

Raw activity samples are bucketed into (device, hour) rows holding
category-seconds. A device only ever generates rows for its own id, so
merging rollups from several devices is a plain keyed union.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import sessionmaker

from timewellspent.models.activity import ActivityCategory, ActivityRollup, ActivitySample
from timewellspent.storage.database import SessionLocal, session_scope
from timewellspent.sync.clock import floor_hour

logger = logging.getLogger(__name__)

_ACTIVE_CATEGORIES = {
    ActivityCategory.productive.value,
    ActivityCategory.neutral.value,
    ActivityCategory.frivolity.value,
}


class RollupStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def record_activity(
        self,
        started_at: datetime,
        category: Optional[str],
        seconds_active: float,
        idle_seconds: float = 0.0,
        source: Optional[str] = None,
    ) -> ActivitySample:
        with session_scope(self._session_factory) as db:
            sample = ActivitySample(
                started_at=started_at,
                category=category,
                seconds_active=seconds_active,
                idle_seconds=idle_seconds,
                source=source,
            )
            db.add(sample)
            db.flush()
            return sample

    def generate_local_rollups(
        self,
        device_id: str,
        since: datetime,
        until: datetime,
        updated_at: datetime,
    ) -> list[ActivityRollup]:
        """Bucket samples in [floor_hour(since), until) into unsaved rollup rows."""
        start = floor_hour(since)
        with session_scope(self._session_factory) as db:
            samples = (
                db.query(ActivitySample)
                .filter(ActivitySample.started_at >= start, ActivitySample.started_at < until)
                .order_by(ActivitySample.started_at)
                .all()
            )

        buckets: dict[datetime, ActivityRollup] = {}
        for sample in samples:
            hour_start = floor_hour(sample.started_at)
            bucket = buckets.get(hour_start)
            if bucket is None:
                bucket = ActivityRollup(
                    device_id=device_id,
                    hour_start=hour_start,
                    productive=0,
                    neutral=0,
                    frivolity=0,
                    idle=0,
                    updated_at=updated_at,
                )
                buckets[hour_start] = bucket
            active = max(0, round(sample.seconds_active or 0))
            idle = max(0, round(sample.idle_seconds or 0))
            category = sample.category if sample.category in _ACTIVE_CATEGORIES else "neutral"
            setattr(bucket, category, getattr(bucket, category) + active)
            bucket.idle += idle
        return list(buckets.values())

    def upsert_rollups(self, rollups: Iterable[ActivityRollup]) -> int:
        count = 0
        with session_scope(self._session_factory) as db:
            for rollup in rollups:
                db.merge(ActivityRollup(
                    device_id=rollup.device_id,
                    hour_start=rollup.hour_start,
                    productive=rollup.productive,
                    neutral=rollup.neutral,
                    frivolity=rollup.frivolity,
                    idle=rollup.idle,
                    updated_at=rollup.updated_at,
                ))
                count += 1
        return count
