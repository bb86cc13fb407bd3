"""
Remote row schemas, one per table.

Rows coming back from the remote store are validated here before they touch
the local store; unknown columns are logged and dropped rather than passed
through. `SELECT_*` strings list exactly the columns each pull asks for.
"""

import logging
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator

logger = logging.getLogger(__name__)


# Columns the server assigns on write; read on pull, never pushed.
SERVER_COLUMNS = {"synced_at"}


class RemoteRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_unmapped(cls, data: Any) -> Any:
        if isinstance(data, dict):
            unknown = set(data) - set(cls.model_fields)
            if unknown:
                logger.debug("%s: ignoring unmapped fields %s", cls.__name__, sorted(unknown))
        return data

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude=SERVER_COLUMNS)


class DeviceRow(RemoteRow):
    id: str
    user_id: Optional[str] = None
    name: str
    platform: str
    last_seen_at: Optional[datetime] = None


class LedgerRow(RemoteRow):
    id: str
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    ts: datetime
    type: Literal["earn", "spend", "adjust"]
    amount: int
    meta: dict = {}
    synced_at: Optional[datetime] = None


class LibraryRow(RemoteRow):
    id: str
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    kind: Literal["url", "app"]
    url: Optional[str] = None
    app: Optional[str] = None
    domain: str
    title: Optional[str] = None
    note: Optional[str] = None
    purpose: str
    price: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    last_used_at: Optional[datetime] = None
    consumed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None


class ConsumptionRow(RemoteRow):
    id: str
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    occurred_at: datetime
    kind: str
    title: Optional[str] = None
    url: Optional[str] = None
    domain: Optional[str] = None
    meta: Optional[dict] = None
    synced_at: Optional[datetime] = None


class RollupRow(RemoteRow):
    device_id: str
    hour_start: datetime
    productive: int = 0
    neutral: int = 0
    frivolity: int = 0
    idle: int = 0
    updated_at: datetime
    synced_at: Optional[datetime] = None

    @property
    def active_seconds(self) -> int:
        return self.productive + self.neutral + self.frivolity


class AchievementRow(RemoteRow):
    user_id: Optional[str] = None
    achievement_id: str
    earned_at: datetime
    meta: Optional[dict] = None


class ProfileRow(RemoteRow):
    user_id: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    color: Optional[str] = None
    pinned_achievements: Optional[list[str]] = None


RequestStatus = Literal["pending", "accepted", "declined", "canceled"]


class FriendRequestRow(RemoteRow):
    id: str
    requester_id: str
    recipient_id: str
    status: RequestStatus
    created_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None


class FriendshipRow(RemoteRow):
    id: str
    user_id: str
    friend_id: str
    created_at: Optional[datetime] = None

    def other(self, user_id: str) -> str:
        return self.friend_id if self.user_id == user_id else self.user_id


SELECT_DEVICE = "id, name, platform, last_seen_at"
SELECT_LEDGER = "id, device_id, ts, type, amount, meta, synced_at"
SELECT_LIBRARY = (
    "id, device_id, kind, url, app, domain, title, note, purpose, price, "
    "created_at, updated_at, last_used_at, consumed_at, deleted_at, synced_at"
)
SELECT_CONSUMPTION = "id, device_id, occurred_at, kind, title, url, domain, meta, synced_at"
SELECT_ROLLUP = "device_id, hour_start, productive, neutral, frivolity, idle, updated_at, synced_at"
SELECT_ACHIEVEMENT = "achievement_id, earned_at, meta"
SELECT_PROFILE = "user_id, handle, display_name, color, pinned_achievements"
SELECT_REQUEST = "id, requester_id, recipient_id, status, created_at"
SELECT_FRIENDSHIP = "id, user_id, friend_id, created_at"
