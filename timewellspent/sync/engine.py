"""
High-level sync engine: pass orchestration, auth entry points, auto-sync loop.

One pass: session check → device register → ledger → library → consumption
→ rollups → achievements → housekeeping. Streams that finished before a
failure keep their advanced cursors; the next pass resumes each stream from
its own cursor. Entry points used by the UI never raise: they return
`{"ok": True, ...}` or `{"ok": False, "error": ...}`.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import parse_qs, urlparse

from sqlalchemy.orm import sessionmaker

from timewellspent.config.settings import settings
from timewellspent.storage.database import SessionLocal
from timewellspent.storage.records import AchievementStore, ConsumptionStore, LedgerStore, LibraryStore
from timewellspent.storage.rollups import RollupStore
from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.auth import AuthClient
from timewellspent.sync.clock import Clock, system_clock, to_iso
from timewellspent.sync.cursors import CursorStore, Stream
from timewellspent.sync.device import DeviceRegistry
from timewellspent.sync.errors import NotAuthenticatedError, NotConfiguredError, SyncError
from timewellspent.sync.housekeeping import Housekeeper
from timewellspent.sync.models import SyncContext
from timewellspent.sync.remote import RemoteStore
from timewellspent.sync.units import (
    AchievementSync, ConsumptionSync, LedgerSync, LibrarySync, RecordSyncUnit, RollupSync,
)
from timewellspent.social.graph import SocialGraph

logger = logging.getLogger(__name__)

RESET_USER_TABLES = ("consumption_log", "wallet_transactions", "library_items", "achievements")


def _failure(error) -> dict:
    return {"ok": False, "error": str(error)}


class SyncEngine:
    """Orchestrates sync passes for this device."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        storage: Optional[SettingsStore] = None,
        auth=None,
        remote=None,
        clock: Clock = system_clock,
        units: Optional[list[RecordSyncUnit]] = None,
        interval_seconds: Optional[int] = None,
    ):
        factory = session_factory or SessionLocal
        self._clock = clock
        self.storage = storage or SettingsStore(factory)
        self.remote = remote or RemoteStore(self.storage)
        self.auth = auth or AuthClient(self.remote)
        self.cursors = CursorStore(self.storage)
        self.devices = DeviceRegistry(self.storage, clock)
        self.housekeeper = Housekeeper(self.remote, self.cursors, self.devices, clock)
        self.social = SocialGraph(self.auth, self.remote, self.devices, self.storage, clock)
        self.units = units or [
            LedgerSync(LedgerStore(factory), self.remote, self.cursors, clock=clock),
            LibrarySync(LibraryStore(factory), self.remote, self.cursors, clock=clock),
            ConsumptionSync(ConsumptionStore(factory), self.remote, self.cursors, clock=clock),
            RollupSync(RollupStore(factory), self.remote, self.cursors, self.devices, clock=clock),
            AchievementSync(AchievementStore(factory), self.remote, self.cursors, clock=clock),
        ]
        self._interval = interval_seconds or settings.sync_interval_seconds
        self._inflight: Optional[asyncio.Task] = None
        self._auto_sync_task: Optional[asyncio.Task] = None
        self.last_error: Optional[str] = None

    @property
    def configured(self) -> bool:
        return self.remote.configured

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _context(self) -> Optional[SyncContext]:
        session = await self.auth.get_session()
        if session is None:
            return None
        return SyncContext(device=self.devices.resolve(), session=session)

    # ── Sync Now ────────────────────────────────────────────────────

    async def sync_now(self) -> dict:
        """Run one pass. Callers arriving mid-pass share its result."""
        if not self.in_progress:
            self._inflight = asyncio.ensure_future(self._sync_pass())
        else:
            logger.debug("Sync already in progress; attaching")
        return await asyncio.shield(self._inflight)

    async def _sync_pass(self) -> dict:
        if not self.configured:
            return _failure(NotConfiguredError())
        try:
            ctx = await self._context()
            if ctx is None:
                return _failure(NotAuthenticatedError())

            await self.devices.register(self.remote, ctx.device, ctx.session)
            streams = {}
            for unit in self.units:
                streams[unit.stream.value] = await unit.run_once(ctx)
            housekeeping = await self.housekeeper.run_if_due(ctx)

            finished = self._clock.now()
            self.cursors.mark_synced(finished)
            self.last_error = None
            logger.info("Sync pass complete for device %s", ctx.device_id)
            return {
                "ok": True,
                "last_sync_at": to_iso(finished),
                "streams": streams,
                "housekeeping": housekeeping,
            }
        except Exception as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.exception("Sync pass failed")
            return _failure(self.last_error)

    # ── Auto-Sync Loop ──────────────────────────────────────────────

    async def start_auto_sync(self) -> None:
        """Start the background loop: one pass now, then every interval."""
        if self._auto_sync_task and not self._auto_sync_task.done():
            return
        self._auto_sync_task = asyncio.create_task(self._auto_sync_loop())
        logger.info("Auto-sync started (interval: %ds)", self._interval)

    async def stop_auto_sync(self) -> None:
        if self._auto_sync_task:
            self._auto_sync_task.cancel()
            try:
                await self._auto_sync_task
            except asyncio.CancelledError:
                pass
            self._auto_sync_task = None
            logger.info("Auto-sync stopped")

    async def _auto_sync_loop(self) -> None:
        while True:
            result = await self.sync_now()
            if not result["ok"]:
                logger.info("Auto-sync pass did not complete: %s", result["error"])
            await asyncio.sleep(self._interval)

    # ── Status ──────────────────────────────────────────────────────

    async def get_status(self) -> dict:
        status = {
            "configured": self.configured,
            "authenticated": False,
            "user": None,
            "device": None,
            "last_sync_at": to_iso(self.cursors.last_sync_at),
            "last_error": self.last_error,
            "in_progress": self.in_progress,
            "auto_sync_running": self._auto_sync_task is not None and not self._auto_sync_task.done(),
            "sync_interval_seconds": self._interval,
        }
        if not self.configured:
            return status
        session = await self.auth.get_session()
        status["device"] = self.devices.resolve().to_dict()
        if session is not None:
            status["authenticated"] = True
            status["user"] = {"id": session.user.id, "email": session.user.email}
        return status

    # ── Account ─────────────────────────────────────────────────────

    async def sign_in(self, provider: str) -> dict:
        """Begin OAuth sign-in; the returned URL must be opened externally."""
        try:
            url = await self.auth.sign_in_url(provider)
        except SyncError as e:
            return _failure(e)
        return {"ok": True, "url": url}

    async def handle_auth_callback(self, url: str) -> dict:
        """Complete sign-in from the provider redirect, then run a pass."""
        if not self.configured:
            return _failure(NotConfiguredError())
        query = parse_qs(urlparse(url).query)
        if "error" in query:
            self.last_error = (query.get("error_description") or query["error"])[0]
            return _failure(self.last_error)
        code = (query.get("code") or [None])[0]
        if not code:
            self.last_error = "Missing auth code"
            return _failure(self.last_error)
        try:
            session = await self.auth.exchange_code(code)
        except SyncError as e:
            self.last_error = str(e)
            logger.warning("Auth code exchange failed: %s", e)
            return _failure(e)
        result = await self.sync_now()
        return {"ok": True, "user_id": session.user.id, "sync": result}

    async def sign_out(self) -> dict:
        try:
            await self.auth.sign_out()
        except SyncError as e:
            logger.warning("Remote sign-out failed: %s", e)
            return _failure(e)
        return {"ok": True}

    # ── Device Management ───────────────────────────────────────────

    async def set_device_name(self, name: str) -> dict:
        if not self.devices.set_name(name or ""):
            return _failure("Name required")
        if not self.configured:
            return {"ok": True}
        try:
            ctx = await self._context()
            if ctx is not None:
                await self.devices.register(self.remote, ctx.device, ctx.session)
        except SyncError as e:
            return _failure(e)
        return {"ok": True}

    async def list_devices(self) -> list[dict]:
        if not self.configured:
            return []
        ctx = await self._context()
        if ctx is None:
            return []
        try:
            rows = await self.devices.list_remote(self.remote, ctx.session)
        except SyncError as e:
            logger.warning("Listing devices failed: %s", e)
            return []
        return [
            {
                "id": row.id,
                "name": row.name,
                "platform": row.platform,
                "last_seen_at": to_iso(row.last_seen_at),
                "is_current": row.id == ctx.device_id,
            }
            for row in rows
        ]

    # ── Remote Resets ───────────────────────────────────────────────

    async def reset_achievements_remote(self) -> dict:
        if not self.configured:
            return {"ok": True}
        session = await self.auth.get_session()
        if session is None:
            return {"ok": True}
        try:
            await self.remote.table("achievements").delete().eq("user_id", session.user.id).execute()
            await self.social.profiles.clear_pinned(session.user.id)
        except SyncError as e:
            return _failure(e)
        self.cursors.clear(Stream.achievements)
        return {"ok": True}

    async def reset_all_remote(self) -> dict:
        """Delete this user's remote data and force a full resync."""
        if not self.configured:
            return {"ok": True}
        session = await self.auth.get_session()
        if session is None:
            return {"ok": True}
        user_id = session.user.id
        try:
            device_ids = list(await self.devices.user_device_ids(self.remote, [user_id]))
            if device_ids:
                await self.remote.table("activity_rollups").delete().in_("device_id", device_ids).execute()
            for table in RESET_USER_TABLES:
                await self.remote.table(table).delete().eq("user_id", user_id).execute()
            await self.social.profiles.clear_pinned(user_id)
        except SyncError as e:
            return _failure(e)
        self.cursors.clear()
        logger.info("Remote data reset for %s", user_id)
        return {"ok": True}

    async def aclose(self) -> None:
        await self.stop_auto_sync()
        await self.remote.aclose()


# Module-level singleton
sync_engine = SyncEngine()
