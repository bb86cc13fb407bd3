"""
Remote account session on the Supabase auth client (OAuth PKCE flow).

Sign-in never happens in-process: `sign_in_url` returns the provider URL the
host opens in an external browser, and the provider later redirects to the
app's callback URL carrying a one-time `code`, which `exchange_code` trades
for a session. The auth client keeps the session and the pending PKCE
verifier in the local settings store through `SettingsSessionStorage`, so
both survive restarts.
"""

import logging
from typing import Optional

from supabase_auth import AsyncSupportedStorage
from supabase_auth.errors import AuthApiError, AuthError

from timewellspent.config.settings import settings
from timewellspent.storage.settings_store import SettingsStore
from timewellspent.sync.errors import NotConfiguredError, RemoteError, ValidationError
from timewellspent.sync.models import AuthSession

logger = logging.getLogger(__name__)

PROVIDERS = ("google", "github")

# Statuses the auth server answers with when a refresh token is no longer valid.
REJECTED_STATUSES = (400, 401, 403)


class SettingsSessionStorage(AsyncSupportedStorage):
    """Auth client storage backed by the local settings store."""

    def __init__(self, store: SettingsStore, namespace: str):
        self._store = store
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get_item(self, key: str) -> Optional[str]:
        return self._store.get_json(self._key(key))

    async def set_item(self, key: str, value: str) -> None:
        self._store.set_json(self._key(key), value)

    async def remove_item(self, key: str) -> None:
        self._store.remove(self._key(key))


def _remote_error(error: Exception) -> RemoteError:
    if isinstance(error, AuthApiError):
        return RemoteError(error.message, status_code=error.status, code=error.code)
    if isinstance(error, AuthError):
        return RemoteError(f"Auth request failed: {error}")
    return RemoteError("Malformed auth response")


class AuthClient:
    """Session access for the sync engine and the friends graph.

    `remote` supplies the Supabase client whose `auth` API this wraps; tests
    hand in an auth API directly.
    """

    def __init__(self, remote=None, gotrue=None):
        self._remote = remote
        self._gotrue = gotrue

    @property
    def configured(self) -> bool:
        return self._gotrue is not None or bool(self._remote and self._remote.configured)

    async def _auth(self):
        if self._gotrue is None:
            if not self.configured:
                raise NotConfiguredError()
            self._gotrue = (await self._remote.client()).auth
        return self._gotrue

    # ── Session ─────────────────────────────────────────────────────

    async def get_session(self) -> Optional[AuthSession]:
        """Current session, refreshed when close to expiry. None when signed out."""
        if not self.configured:
            return None
        auth = await self._auth()
        try:
            session = await auth.get_session()
        except AuthApiError as e:
            if e.status in REJECTED_STATUSES:
                logger.info("Refresh token rejected; signing out locally")
                await self._sign_out_locally(auth)
            else:
                logger.warning("Session refresh failed: %s", e)
            return None
        except (AuthError, KeyError, TypeError, ValueError) as e:
            logger.warning("Session refresh failed: %s", e)
            return None
        if session is None:
            return None
        try:
            return AuthSession.from_supabase(session)
        except (AttributeError, TypeError, ValueError):
            logger.warning("Discarding unreadable auth session")
            await self._sign_out_locally(auth)
            return None

    async def access_token(self) -> Optional[str]:
        session = await self.get_session()
        return session.access_token if session else None

    async def _sign_out_locally(self, auth) -> None:
        try:
            await auth.sign_out({"scope": "local"})
        except AuthError as e:
            logger.warning("Local sign-out failed: %s", e)

    # ── Sign in / out ───────────────────────────────────────────────

    async def sign_in_url(self, provider: str, redirect_to: Optional[str] = None) -> str:
        """Start a PKCE sign-in; returns the URL to open externally."""
        if provider not in PROVIDERS:
            raise ValidationError(f"Unsupported provider: {provider}")
        auth = await self._auth()
        response = await auth.sign_in_with_oauth({
            "provider": provider,
            "options": {"redirect_to": redirect_to or settings.sync_redirect_url},
        })
        return response.url

    async def exchange_code(self, code: str) -> AuthSession:
        auth = await self._auth()
        try:
            response = await auth.exchange_code_for_session({"auth_code": code})
            if response.session is None:
                raise RemoteError("Malformed auth response")
            session = AuthSession.from_supabase(response.session)
        except (AuthError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise _remote_error(e) from e
        logger.info("Signed in as %s", session.user.id)
        return session

    async def sign_out(self) -> None:
        auth = await self._auth()
        try:
            await auth.sign_out()
        except AuthError as e:
            raise RemoteError(f"Sign-out failed: {e}") from e
