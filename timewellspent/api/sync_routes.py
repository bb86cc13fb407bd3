"""
Sync API routes.

POST   /api/sync                     Run a sync pass now
GET    /api/sync/status              Engine status
GET    /api/sync/devices             This account's devices
PUT    /api/sync/device/name         Rename this device
POST   /api/sync/sign-in             Start OAuth sign-in (returns URL to open)
GET    /api/sync/callback            OAuth redirect target
POST   /api/sync/sign-out            Sign out
POST   /api/sync/reset               Delete this account's remote data
POST   /api/sync/reset/achievements  Delete remote achievements only
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from timewellspent.api.deps import get_engine
from timewellspent.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


# ── Request/Response Models ─────────────────────────────────────────────

class ResultResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


class SyncResponse(ResultResponse):
    last_sync_at: Optional[str] = None
    streams: Optional[dict] = None
    housekeeping: Optional[dict] = None


class SignInRequest(BaseModel):
    provider: Literal["google", "github"]


class SignInResponse(ResultResponse):
    url: Optional[str] = None


class CallbackResponse(ResultResponse):
    user_id: Optional[str] = None
    sync: Optional[dict] = None


class DeviceNameRequest(BaseModel):
    name: str


class StatusResponse(BaseModel):
    configured: bool
    authenticated: bool
    user: Optional[dict] = None
    device: Optional[dict] = None
    last_sync_at: Optional[str] = None
    last_error: Optional[str] = None
    in_progress: bool
    auto_sync_running: bool
    sync_interval_seconds: int


class DeviceOut(BaseModel):
    id: str
    name: str
    platform: str
    last_seen_at: Optional[str] = None
    is_current: bool


# ── Routes ──────────────────────────────────────────────────────────────

@router.post("", response_model=SyncResponse)
async def sync_now(engine: SyncEngine = Depends(get_engine)):
    """Run a pass, or join the one already running."""
    return await engine.sync_now()


@router.get("/status", response_model=StatusResponse)
async def sync_status(engine: SyncEngine = Depends(get_engine)):
    return await engine.get_status()


@router.get("/devices", response_model=list[DeviceOut])
async def list_devices(engine: SyncEngine = Depends(get_engine)):
    return await engine.list_devices()


@router.put("/device/name", response_model=ResultResponse)
async def rename_device(req: DeviceNameRequest, engine: SyncEngine = Depends(get_engine)):
    return await engine.set_device_name(req.name)


@router.post("/sign-in", response_model=SignInResponse)
async def sign_in(req: SignInRequest, engine: SyncEngine = Depends(get_engine)):
    return await engine.sign_in(req.provider)


@router.get("/callback", response_model=CallbackResponse)
async def auth_callback(request: Request, engine: SyncEngine = Depends(get_engine)):
    return await engine.handle_auth_callback(str(request.url))


@router.post("/sign-out", response_model=ResultResponse)
async def sign_out(engine: SyncEngine = Depends(get_engine)):
    return await engine.sign_out()


@router.post("/reset", response_model=ResultResponse)
async def reset_remote(engine: SyncEngine = Depends(get_engine)):
    return await engine.reset_all_remote()


@router.post("/reset/achievements", response_model=ResultResponse)
async def reset_achievements(engine: SyncEngine = Depends(get_engine)):
    return await engine.reset_achievements_remote()
