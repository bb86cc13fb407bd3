"""
Friend graph controller.

Request lifecycle:

    pending ──accept (recipient)──▶ accepted   + friendship row
            ──decline (recipient)─▶ declined
            ──cancel (requester)──▶ canceled

Only `pending` has outgoing transitions; terminal requests are kept. Every
call re-reads the signed-in session before doing anything, so the acting
user is never taken from the caller.

Reads fail soft (empty results) when sync is unconfigured, signed out, or
the remote is unreachable. Mutations return None when unconfigured and
otherwise raise `SyncError` subclasses with user-readable messages.
"""

import logging
from collections import Counter
from datetime import timedelta
from typing import Optional

from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.clock import Clock, system_clock, to_iso
from timewellspent.sync.errors import (
    AuthorizationError, ConflictError, NotAuthenticatedError, NotFoundError, RemoteError,
)
from timewellspent.sync.models import AuthSession
from timewellspent.sync.remote import Filter
from timewellspent.sync.schemas import (
    SELECT_FRIENDSHIP, SELECT_REQUEST, SELECT_ROLLUP, FriendRequestRow, FriendshipRow, RollupRow,
)
from timewellspent.social import summaries
from timewellspent.social.profiles import ProfileDirectory, profile_dict

logger = logging.getLogger(__name__)

FRIENDS_COUNT_KEY = "sync_friends_count"


def _pair(a_col: str, b_col: str, a: str, b: str) -> list[list[Filter]]:
    """Either orientation of an unordered (a, b) pair."""
    return [
        [Filter(a_col, "eq", a), Filter(b_col, "eq", b)],
        [Filter(a_col, "eq", b), Filter(b_col, "eq", a)],
    ]


class SocialGraph:
    def __init__(
        self,
        auth,
        remote,
        devices,
        storage: SettingsStore,
        clock: Clock = system_clock,
    ):
        self._auth = auth
        self._remote = remote
        self._devices = devices
        self._storage = storage
        self._clock = clock
        self.profiles = ProfileDirectory(remote, clock)

    @property
    def configured(self) -> bool:
        return self._remote.configured

    async def _session(self) -> Optional[AuthSession]:
        if not self.configured:
            return None
        return await self._auth.get_session()

    async def _require_session(self) -> AuthSession:
        session = await self._session()
        if session is None:
            raise NotAuthenticatedError()
        return session

    # ── Profiles ────────────────────────────────────────────────────

    async def get_profile(self) -> Optional[dict]:
        session = await self._session()
        if session is None:
            return None
        try:
            return profile_dict(await self.profiles.ensure(session))
        except RemoteError as e:
            logger.warning("Profile lookup failed: %s", e)
            return None

    async def update_profile(self, **fields) -> Optional[dict]:
        if not self.configured:
            return None
        session = await self._require_session()
        return profile_dict(await self.profiles.update(session, **fields))

    async def find_by_handle(self, handle: str) -> Optional[dict]:
        if await self._session() is None:
            return None
        try:
            profile = await self.profiles.find_by_handle(handle)
        except RemoteError as e:
            logger.warning("Handle lookup failed: %s", e)
            return None
        return profile_dict(profile) if profile else None

    # ── Requests ────────────────────────────────────────────────────

    async def request_friend(self, handle: str) -> Optional[dict]:
        if not self.configured:
            return None
        session = await self._require_session()
        me = session.user.id

        target = await self.profiles.find_by_handle(handle)
        if target is None:
            raise NotFoundError("Handle not found")
        if target.user_id == me:
            raise ConflictError("You cannot add yourself")

        existing_friend = await (
            self._remote.table("friends")
            .select("id")
            .or_(*_pair("user_id", "friend_id", me, target.user_id))
            .limit(1)
            .execute()
        )
        if existing_friend:
            raise ConflictError("Already friends")

        existing_request = await (
            self._remote.table("friend_requests")
            .select("id")
            .eq("status", "pending")
            .or_(*_pair("requester_id", "recipient_id", me, target.user_id))
            .limit(1)
            .execute()
        )
        if existing_request:
            raise ConflictError("Request already pending")

        try:
            created = await (
                self._remote.table("friend_requests")
                .insert({"requester_id": me, "recipient_id": target.user_id, "status": "pending"})
                .execute()
            )
        except RemoteError as e:
            if e.is_unique_violation:
                raise ConflictError("Request already pending") from e
            raise
        request = FriendRequestRow.model_validate(created[0])
        logger.info("Friend request %s sent to %s", request.id, target.user_id)
        return self._request_dict(request, me, target)

    async def list_requests(self) -> dict:
        empty = {"incoming": [], "outgoing": []}
        session = await self._session()
        if session is None:
            return empty
        me = session.user.id
        try:
            rows = await (
                self._remote.table("friend_requests")
                .select(SELECT_REQUEST)
                .eq("status", "pending")
                .or_(Filter("requester_id", "eq", me), Filter("recipient_id", "eq", me))
                .order("created_at")
                .execute()
            )
            requests = [FriendRequestRow.model_validate(r) for r in rows]
            others = [r.recipient_id if r.requester_id == me else r.requester_id for r in requests]
            profiles = await self.profiles.lookup(others)
        except RemoteError as e:
            logger.warning("Listing friend requests failed: %s", e)
            return empty

        result = {"incoming": [], "outgoing": []}
        for request, other in zip(requests, others):
            item = self._request_dict(request, me, profiles.get(other))
            result[item["direction"]].append(item)
        return result

    def _request_dict(self, request: FriendRequestRow, me: str, profile) -> dict:
        outgoing = request.requester_id == me
        other = request.recipient_id if outgoing else request.requester_id
        return {
            "id": request.id,
            "user_id": other,
            "handle": profile.handle if profile else None,
            "display_name": profile.display_name if profile else None,
            "direction": "outgoing" if outgoing else "incoming",
            "status": request.status,
            "created_at": to_iso(request.created_at),
        }

    async def _load_request(self, request_id: str) -> FriendRequestRow:
        row = await (
            self._remote.table("friend_requests")
            .select(SELECT_REQUEST)
            .eq("id", request_id)
            .maybe_single()
        )
        if row is None:
            raise NotFoundError("Request not found")
        return FriendRequestRow.model_validate(row)

    async def _transition(self, request: FriendRequestRow, status: str) -> bool:
        """Move a pending request to `status`. False if it was no longer pending."""
        updated = await (
            self._remote.table("friend_requests")
            .update({"status": status, "responded_at": self._clock.now()})
            .eq("id", request.id)
            .eq("status", "pending")
            .execute()
        )
        return bool(updated)

    async def accept_request(self, request_id: str) -> None:
        if not self.configured:
            return
        session = await self._require_session()
        me = session.user.id
        request = await self._load_request(request_id)
        if request.recipient_id != me:
            raise AuthorizationError()
        if request.status != "pending":
            return
        # The friendship goes in first so a failed insert leaves the request pending.
        created = None
        try:
            created = await (
                self._remote.table("friends")
                .insert({"user_id": me, "friend_id": request.requester_id})
                .maybe_single()
            )
        except RemoteError as e:
            if not e.is_unique_violation:
                raise
            logger.debug("Friendship with %s already exists", request.requester_id)
        if not await self._transition(request, "accepted"):
            if created:
                await self._remote.table("friends").delete().eq("id", created["id"]).execute()
            logger.info("Friend request %s was no longer pending", request_id)
            return
        logger.info("Accepted friend request %s", request_id)

    async def decline_request(self, request_id: str) -> None:
        if not self.configured:
            return
        session = await self._require_session()
        request = await self._load_request(request_id)
        if request.recipient_id != session.user.id:
            raise AuthorizationError()
        if request.status == "pending":
            await self._transition(request, "declined")

    async def cancel_request(self, request_id: str) -> None:
        if not self.configured:
            return
        session = await self._require_session()
        request = await self._load_request(request_id)
        if request.requester_id != session.user.id:
            raise AuthorizationError()
        if request.status == "pending":
            await self._transition(request, "canceled")

    # ── Friendships ─────────────────────────────────────────────────

    async def _friendships(self, me: str) -> list[FriendshipRow]:
        rows = await (
            self._remote.table("friends")
            .select(SELECT_FRIENDSHIP)
            .or_(Filter("user_id", "eq", me), Filter("friend_id", "eq", me))
            .order("created_at")
            .execute()
        )
        seen = set()
        friendships = []
        for row in (FriendshipRow.model_validate(r) for r in rows):
            other = row.other(me)
            if other in seen:
                continue
            seen.add(other)
            friendships.append(row)
        return friendships

    async def list_friends(self) -> list[dict]:
        session = await self._session()
        if session is None:
            return []
        me = session.user.id
        try:
            friendships = await self._friendships(me)
            profiles = await self.profiles.lookup([f.other(me) for f in friendships])
        except RemoteError as e:
            logger.warning("Listing friends failed: %s", e)
            return []

        friends = []
        for friendship in friendships:
            other = friendship.other(me)
            friends.append({
                **profile_dict(profiles.get(other), other),
                "id": friendship.id,
                "user_id": other,
                "created_at": to_iso(friendship.created_at),
            })
        self._storage.set_json(FRIENDS_COUNT_KEY, len(friends))
        return friends

    async def remove_friend(self, friendship_id: str) -> None:
        if not self.configured:
            return
        session = await self._require_session()
        me = session.user.id
        row = await (
            self._remote.table("friends")
            .select(SELECT_FRIENDSHIP)
            .eq("id", friendship_id)
            .maybe_single()
        )
        if row is None:
            raise NotFoundError("Friendship not found")
        friendship = FriendshipRow.model_validate(row)
        if me not in (friendship.user_id, friendship.friend_id):
            raise AuthorizationError()
        await self._remote.table("friends").delete().eq("id", friendship_id).execute()
        logger.info("Removed friendship %s", friendship_id)

    # ── Activity ────────────────────────────────────────────────────

    async def _rollups(self, device_ids: list[str], start, end) -> list[RollupRow]:
        if not device_ids:
            return []
        rows = await (
            self._remote.table("activity_rollups")
            .select(SELECT_ROLLUP)
            .in_("device_id", device_ids)
            .gte("hour_start", start)
            .lt("hour_start", end)
            .order("hour_start")
            .execute()
        )
        return [RollupRow.model_validate(r) for r in rows]

    async def _emergency_counts(self, device_owners: dict[str, str], start, end) -> dict[str, int]:
        try:
            rows = await (
                self._remote.table("consumption_log")
                .select("device_id")
                .in_("device_id", list(device_owners))
                .gte("occurred_at", start)
                .lt("occurred_at", end)
                .eq("kind", summaries.EMERGENCY_KIND)
                .execute()
            )
        except RemoteError as e:
            logger.warning("Emergency session counts unavailable: %s", e)
            return {}
        return dict(Counter(device_owners[r["device_id"]] for r in rows if r.get("device_id") in device_owners))

    async def get_friend_summaries(self, window_hours: Optional[int] = None) -> dict[str, dict]:
        """Per-friend activity totals over the last `window_hours` hours."""
        friends = await self.list_friends()
        if not friends:
            return {}
        hours = summaries.clamp_window(window_hours)
        start = summaries.window_start(self._clock.now(), hours)
        end = start + timedelta(hours=hours)
        try:
            owners = await self._devices.user_device_ids(self._remote, [f["user_id"] for f in friends])
            if not owners:
                return {}
            rollups = await self._rollups(list(owners), start, end)
        except RemoteError as e:
            logger.warning("Friend summaries unavailable: %s", e)
            return {}
        emergencies = await self._emergency_counts(owners, start, end)
        return summaries.summarize(rollups, owners, hours, emergencies)

    async def get_friend_timeline(self, user_id: str, window_hours: Optional[int] = None) -> Optional[dict]:
        """Hour-by-hour activity for the caller or one of their friends; None otherwise."""
        session = await self._session()
        if session is None:
            return None
        me = session.user.id
        hours = summaries.clamp_window(window_hours)
        start = summaries.window_start(self._clock.now(), hours)
        end = start + timedelta(hours=hours)
        try:
            if user_id != me:
                friends = await self._friendships(me)
                if user_id not in {f.other(me) for f in friends}:
                    return None
            owners = await self._devices.user_device_ids(self._remote, [user_id])
            if not owners:
                return None
            rollups = await self._rollups(list(owners), start, end)
        except RemoteError as e:
            logger.warning("Timeline for %s unavailable: %s", user_id, e)
            return None
        return summaries.build_timeline(user_id, rollups, start, hours)
