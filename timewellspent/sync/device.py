"""
Identity of this installation and its presence in the remote device table.
"""

import logging
import platform
import sys
import uuid
from typing import Optional

from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.clock import Clock, system_clock
from timewellspent.sync.models import AuthSession, Device
from timewellspent.sync.schemas import SELECT_DEVICE, DeviceRow

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "sync_device_id"
DEVICE_NAME_KEY = "sync_device_name"


class DeviceRegistry:
    def __init__(self, storage: SettingsStore, clock: Clock = system_clock):
        self._storage = storage
        self._clock = clock

    def resolve(self) -> Device:
        """Load the device identity, creating it on first run."""
        device_id = self._storage.get_json(DEVICE_ID_KEY)
        if not device_id:
            device_id = str(uuid.uuid4())
            self._storage.set_json(DEVICE_ID_KEY, device_id)
            logger.info("Created new device identity: %s", device_id)
        name = self._storage.get_json(DEVICE_NAME_KEY)
        if not name:
            name = platform.node() or "unknown"
            self._storage.set_json(DEVICE_NAME_KEY, name)
        return Device(id=device_id, name=name, platform=sys.platform)

    def set_name(self, name: str) -> Optional[str]:
        trimmed = name.strip()
        if not trimmed:
            return None
        self._storage.set_json(DEVICE_NAME_KEY, trimmed)
        return trimmed

    async def register(self, remote, device: Device, session: AuthSession) -> None:
        """Upsert the device row and refresh last_seen_at."""
        row = DeviceRow(
            id=device.id,
            user_id=session.user.id,
            name=device.name,
            platform=device.platform,
            last_seen_at=self._clock.now(),
        )
        await remote.table("devices").upsert([row.to_payload()], on_conflict="id").execute()

    async def list_remote(self, remote, session: AuthSession) -> list[DeviceRow]:
        rows = await (
            remote.table("devices")
            .select(SELECT_DEVICE)
            .eq("user_id", session.user.id)
            .order("last_seen_at", ascending=False)
            .execute()
        )
        return [DeviceRow.model_validate(r) for r in rows]

    async def user_device_ids(self, remote, user_ids: list[str]) -> dict[str, str]:
        """Map device id -> owning user id for the given users."""
        if not user_ids:
            return {}
        rows = await remote.table("devices").select("id, user_id").in_("user_id", user_ids).execute()
        return {r["id"]: r["user_id"] for r in rows}
