"""
Remote retention, run at most once per housekeeping interval.

Prunes the caller's own rollups older than the rollup retention window and
consumption-log rows older than the consumption retention window. The
housekeeping cursor only moves after both deletes succeed.
"""

import logging
from datetime import timedelta
from typing import Optional

from timewellspent.config.settings import settings
from timewellspent.sync.clock import Clock, system_clock
from timewellspent.sync.cursors import CursorStore, Stream
from timewellspent.sync.errors import SyncError
from timewellspent.sync.models import SyncContext

logger = logging.getLogger(__name__)


class Housekeeper:
    def __init__(
        self,
        remote,
        cursors: CursorStore,
        devices,
        clock: Clock = system_clock,
        interval_hours: Optional[int] = None,
        rollup_retention_days: Optional[int] = None,
        consumption_retention_days: Optional[int] = None,
    ):
        self._remote = remote
        self._cursors = cursors
        self._devices = devices
        self._clock = clock
        self._interval = timedelta(hours=interval_hours or settings.sync_housekeeping_interval_hours)
        self._rollup_retention = timedelta(days=rollup_retention_days or settings.sync_rollup_retention_days)
        self._consumption_retention = timedelta(
            days=consumption_retention_days or settings.sync_consumption_retention_days
        )

    def is_due(self) -> bool:
        last = self._cursors.get(Stream.housekeeping)
        return last is None or self._clock.now() - last >= self._interval

    async def run_if_due(self, ctx: SyncContext) -> dict:
        """Never raises; a failed run leaves the cursor where it was."""
        if not self.is_due():
            return {"ran": False}
        now = self._clock.now()
        try:
            deleted = await self._prune(ctx, now)
        except SyncError as e:
            logger.warning("Housekeeping failed, will retry next pass: %s", e)
            return {"ran": False, "error": str(e)}
        self._cursors.advance(Stream.housekeeping, now)
        logger.info("Housekeeping complete: %s", deleted)
        return {"ran": True, **deleted}

    async def _prune(self, ctx: SyncContext, now) -> dict:
        rollup_cutoff = now - self._rollup_retention
        consumption_cutoff = now - self._consumption_retention

        device_ids = [
            device_id
            for device_id, owner in (await self._devices.user_device_ids(self._remote, [ctx.user_id])).items()
            if owner == ctx.user_id
        ]
        if device_ids:
            await (
                self._remote.table("activity_rollups")
                .delete()
                .in_("device_id", device_ids)
                .lt("hour_start", rollup_cutoff)
                .execute()
            )
        await (
            self._remote.table("consumption_log")
            .delete()
            .eq("user_id", ctx.user_id)
            .lt("occurred_at", consumption_cutoff)
            .execute()
        )
        return {
            "rollup_cutoff": rollup_cutoff.isoformat(),
            "consumption_cutoff": consumption_cutoff.isoformat(),
            "devices": len(device_ids),
        }
