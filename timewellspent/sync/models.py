"""
Value types passed through the sync engine.

- Device: identity of this installation in the user's device set
- AuthUser / AuthSession: the signed-in remote account
- SyncContext: device + session threaded into every unit and graph call
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    platform: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    user: AuthUser

    @classmethod
    def from_supabase(cls, session: Any) -> "AuthSession":
        """Build a session from the auth client's session object."""
        user = session.user
        metadata = user.user_metadata or {}
        expires_at = None
        if session.expires_at:
            expires_at = datetime.fromtimestamp(int(session.expires_at), tz=timezone.utc)
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=expires_at,
            user=AuthUser(
                id=user.id,
                email=user.email,
                full_name=metadata.get("full_name") or metadata.get("name"),
            ),
        )


@dataclass(frozen=True)
class SyncContext:
    device: Device
    session: AuthSession

    @property
    def device_id(self) -> str:
        return self.device.id

    @property
    def user_id(self) -> str:
        return self.session.user.id
