"""
Public profiles: handle, display name, colour and pinned achievements.

A profile row is created the first time an authenticated user needs one.
Handles are unique across users; the remote unique index is authoritative,
the pre-check only gives a friendlier error earlier.
"""

import logging
import re
from typing import Optional

from timewellspent.sync.errors import ConflictError, RemoteError, ValidationError
from timewellspent.sync.models import AuthSession
from timewellspent.sync.schemas import SELECT_PROFILE, ProfileRow

logger = logging.getLogger(__name__)

HANDLE_PATTERN = re.compile(r"^[a-z0-9_]{3,20}$")
HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")
HANDLE_RULES = "Handle must be 3-20 characters: lowercase letters, numbers, underscore"
HANDLE_TAKEN = "Handle already taken"

_UNSET = object()


def normalize_handle(handle: Optional[str]) -> Optional[str]:
    if handle is None:
        return None
    normalized = handle.strip().lower()
    return normalized or None


def validate_handle(handle: str) -> str:
    if not HANDLE_PATTERN.match(handle):
        raise ValidationError(HANDLE_RULES)
    return handle


def normalize_color(value: Optional[str]) -> Optional[str]:
    """Accept `#rrggbb` or any `hsl(...)` string; anything else is None."""
    if not value:
        return None
    trimmed = value.strip()
    if HEX_COLOR_PATTERN.match(trimmed) or trimmed.lower().startswith("hsl("):
        return trimmed
    return None


def default_color_from_id(value: str) -> str:
    # 32-bit string hash, stable across clients
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return f"hsl({abs(h) % 360} 65% 55%)"


def default_display_name(session: AuthSession) -> Optional[str]:
    full_name = (session.user.full_name or "").strip()
    if full_name:
        return full_name
    if session.user.email:
        return session.user.email.split("@")[0]
    return None


class ProfileDirectory:
    def __init__(self, remote, clock):
        self._remote = remote
        self._clock = clock

    def _profiles(self):
        return self._remote.table("profiles")

    async def get(self, user_id: str) -> Optional[ProfileRow]:
        row = await self._profiles().select(SELECT_PROFILE).eq("user_id", user_id).maybe_single()
        return ProfileRow.model_validate(row) if row else None

    async def ensure(self, session: AuthSession) -> ProfileRow:
        """The caller's profile, created with defaults on first use."""
        existing = await self.get(session.user.id)
        if existing:
            return existing
        row = ProfileRow(
            user_id=session.user.id,
            display_name=default_display_name(session),
            color=default_color_from_id(session.user.id),
        )
        payload = {**row.to_payload(), "updated_at": self._clock.now()}
        try:
            created = await self._profiles().insert(payload).execute()
        except RemoteError as e:
            if not e.is_unique_violation:
                raise
            # created concurrently by another device
            return await self.get(session.user.id) or row
        logger.info("Created profile for %s", session.user.id)
        return ProfileRow.model_validate(created[0]) if created else row

    async def update(
        self,
        session: AuthSession,
        handle=_UNSET,
        display_name=_UNSET,
        color=_UNSET,
        pinned_achievements=_UNSET,
    ) -> ProfileRow:
        """Change the caller's profile. Omitted fields keep their current value."""
        existing = await self.ensure(session)
        user_id = session.user.id

        new_handle = existing.handle if handle is _UNSET else normalize_handle(handle)
        new_name = existing.display_name
        if display_name is not _UNSET:
            new_name = display_name.strip() if display_name else None
        new_color = existing.color
        if color is not _UNSET:
            new_color = normalize_color(color) or existing.color
        new_color = new_color or default_color_from_id(user_id)
        pinned = existing.pinned_achievements
        if pinned_achievements is not _UNSET:
            pinned = [p for p in pinned_achievements if p] if pinned_achievements is not None else None

        if new_handle:
            validate_handle(new_handle)
            conflict = await (
                self._profiles()
                .select("user_id")
                .eq("handle", new_handle)
                .neq("user_id", user_id)
                .maybe_single()
            )
            if conflict:
                raise ConflictError(HANDLE_TAKEN)

        row = ProfileRow(
            user_id=user_id,
            handle=new_handle,
            display_name=new_name,
            color=new_color,
            pinned_achievements=pinned,
        )
        payload = {**row.to_payload(), "updated_at": self._clock.now()}
        try:
            await self._profiles().upsert([payload], on_conflict="user_id").execute()
        except RemoteError as e:
            if e.is_unique_violation:
                raise ConflictError(HANDLE_TAKEN) from e
            raise
        return row

    async def find_by_handle(self, handle: str) -> Optional[ProfileRow]:
        normalized = normalize_handle(handle)
        if not normalized:
            return None
        row = await self._profiles().select(SELECT_PROFILE).eq("handle", normalized).maybe_single()
        return ProfileRow.model_validate(row) if row else None

    async def lookup(self, user_ids: list[str]) -> dict[str, ProfileRow]:
        if not user_ids:
            return {}
        rows = await self._profiles().select(SELECT_PROFILE).in_("user_id", sorted(set(user_ids))).execute()
        profiles = [ProfileRow.model_validate(r) for r in rows]
        return {p.user_id: p for p in profiles}

    async def clear_pinned(self, user_id: str) -> None:
        await self._profiles().update({"pinned_achievements": []}, returning=False).eq("user_id", user_id).execute()


def profile_dict(profile: Optional[ProfileRow], user_id: Optional[str] = None) -> dict:
    return {
        "id": profile.user_id if profile else user_id,
        "handle": profile.handle if profile else None,
        "display_name": profile.display_name if profile else None,
        "color": profile.color if profile else None,
        "pinned_achievements": profile.pinned_achievements if profile else None,
    }

