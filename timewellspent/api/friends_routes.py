"""
Friends API routes.

GET    /api/friends                          Friends with activity summaries
GET    /api/friends/profile                  Caller's profile (created on first use)
PATCH  /api/friends/profile                  Update handle / name / colour / pins
GET    /api/friends/requests                 Pending requests, incoming and outgoing
POST   /api/friends/requests                 Send a request by handle
POST   /api/friends/requests/{id}/accept     Accept (recipient only)
POST   /api/friends/requests/{id}/decline    Decline (recipient only)
POST   /api/friends/requests/{id}/cancel     Cancel (requester only)
DELETE /api/friends/{friendship_id}          Remove a friend
GET    /api/friends/{user_id}                Hourly timeline for a friend or self
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from timewellspent.api.deps import get_engine, http_error
from timewellspent.sync.engine import SyncEngine
from timewellspent.sync.errors import SyncError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/friends", tags=["friends"])


# ── Request/Response Models ─────────────────────────────────────────────

class ProfileOut(BaseModel):
    id: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    color: Optional[str] = None
    pinned_achievements: Optional[list[str]] = None


class ProfileUpdate(BaseModel):
    handle: Optional[str] = None
    display_name: Optional[str] = None
    color: Optional[str] = None
    pinned_achievements: Optional[list[str]] = None


class FriendOut(ProfileOut):
    user_id: str
    created_at: Optional[str] = None


class FriendsResponse(BaseModel):
    profile: Optional[ProfileOut] = None
    friends: list[FriendOut]
    summaries: dict[str, dict]


class FriendRequestIn(BaseModel):
    handle: str


class FriendRequestOut(BaseModel):
    id: str
    user_id: str
    handle: Optional[str] = None
    display_name: Optional[str] = None
    direction: str
    status: str
    created_at: Optional[str] = None


class RequestsResponse(BaseModel):
    incoming: list[FriendRequestOut]
    outgoing: list[FriendRequestOut]


# ── Routes ──────────────────────────────────────────────────────────────

@router.get("", response_model=FriendsResponse)
async def list_friends(
    window_hours: int = Query(24, ge=1, le=168),
    engine: SyncEngine = Depends(get_engine),
):
    social = engine.social
    return {
        "profile": await social.get_profile(),
        "friends": await social.list_friends(),
        "summaries": await social.get_friend_summaries(window_hours),
    }


@router.get("/profile", response_model=Optional[ProfileOut])
async def get_profile(engine: SyncEngine = Depends(get_engine)):
    return await engine.social.get_profile()


@router.patch("/profile", response_model=Optional[ProfileOut])
async def update_profile(req: ProfileUpdate, engine: SyncEngine = Depends(get_engine)):
    try:
        return await engine.social.update_profile(**req.model_dump(exclude_unset=True))
    except SyncError as e:
        raise http_error(e)


@router.get("/requests", response_model=RequestsResponse)
async def list_requests(engine: SyncEngine = Depends(get_engine)):
    return await engine.social.list_requests()


@router.post("/requests", response_model=Optional[FriendRequestOut])
async def send_request(req: FriendRequestIn, engine: SyncEngine = Depends(get_engine)):
    try:
        return await engine.social.request_friend(req.handle)
    except SyncError as e:
        raise http_error(e)


@router.post("/requests/{request_id}/accept")
async def accept_request(request_id: str, engine: SyncEngine = Depends(get_engine)):
    try:
        await engine.social.accept_request(request_id)
    except SyncError as e:
        raise http_error(e)
    return {"ok": True}


@router.post("/requests/{request_id}/decline")
async def decline_request(request_id: str, engine: SyncEngine = Depends(get_engine)):
    try:
        await engine.social.decline_request(request_id)
    except SyncError as e:
        raise http_error(e)
    return {"ok": True}


@router.post("/requests/{request_id}/cancel")
async def cancel_request(request_id: str, engine: SyncEngine = Depends(get_engine)):
    try:
        await engine.social.cancel_request(request_id)
    except SyncError as e:
        raise http_error(e)
    return {"ok": True}


@router.delete("/{friendship_id}")
async def remove_friend(friendship_id: str, engine: SyncEngine = Depends(get_engine)):
    try:
        await engine.social.remove_friend(friendship_id)
    except SyncError as e:
        raise http_error(e)
    return {"ok": True}


@router.get("/{user_id}")
async def friend_timeline(
    user_id: str,
    window_hours: int = Query(24, ge=1, le=168),
    engine: SyncEngine = Depends(get_engine),
):
    timeline = await engine.social.get_friend_timeline(user_id, window_hours)
    if timeline is None:
        raise HTTPException(status_code=404, detail="Timeline not available")
    return timeline
