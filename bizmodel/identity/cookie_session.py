"""
cookie_session.py — Server-side cookie session store.

The browser holds only "<session_id>.<signature>" (HMAC-SHA256 over the id
with settings.session_secret). The payload — at minimum {"userId": int} —
lives in Redis under session:{session_id} (see cache.py).

Flow per request (cookie_session_middleware):
  1. Load: verify the cookie signature, fetch the payload from Redis.
     Any failure yields a fresh, unsaved session (never an error response).
  2. Handler runs with request.state.session.
  3. Save: if the payload was modified, write it back and set the cookie.
     A save failure is logged and tolerated — the Session Cache covers it.

Login/signup do not rely on step 3: they await CookieSession.save() directly
(see resolver.set_user_id_in_request_and_save) and let store errors propagate.
"""
import base64
import hashlib
import hmac
import logging
import secrets
from typing import Any, Optional

import redis.asyncio as aioredis
from fastapi import Request, Response
from redis.exceptions import RedisError

from bizmodel.cache import SESSION_TTL, delete_session_data, get_session_data, set_session_data
from bizmodel.config import settings

logger = logging.getLogger(__name__)

USER_ID_KEY = "userId"


# ---------------------------------------------------------------------------
# Cookie signing
# ---------------------------------------------------------------------------

def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def _signature(session_id: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), session_id.encode("utf-8"), hashlib.sha256).digest()
    return _b64encode(digest)


def sign_session_id(session_id: str, secret: str) -> str:
    return f"{session_id}.{_signature(session_id, secret)}"


def unsign_session_id(cookie_value: str, secret: str) -> Optional[str]:
    """Return the session id if the signature verifies, else None."""
    session_id, sep, signature = cookie_value.rpartition(".")
    if not sep or not session_id:
        return None
    if not hmac.compare_digest(_signature(session_id, secret), signature):
        return None
    return session_id


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Backend + session object
# ---------------------------------------------------------------------------

class RedisSessionBackend:
    """Thin adapter over the cache.py session helpers."""

    def __init__(self, client: aioredis.Redis, ttl: int = SESSION_TTL) -> None:
        self.client = client
        self.ttl = ttl

    async def load(self, session_id: str) -> Optional[dict]:
        return await get_session_data(self.client, session_id)

    async def save(self, session_id: str, data: dict) -> None:
        await set_session_data(self.client, session_id, data, ttl=self.ttl)

    async def delete(self, session_id: str) -> None:
        await delete_session_data(self.client, session_id)


class CookieSession:
    """
    Mutable per-request session payload.

    `modified` tracks unsaved changes; `saved` records that the store holds
    this session id (so the cookie must be sent); `destroyed` asks the
    middleware to clear the cookie.
    """

    def __init__(
        self,
        backend: RedisSessionBackend,
        session_id: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> None:
        self.backend = backend
        self.session_id = session_id or new_session_id()
        self.data: dict[str, Any] = dict(data or {})
        self.is_new = data is None
        self.modified = False
        self.saved = False
        self.destroyed = False

    @property
    def user_id(self) -> Optional[int]:
        value = self.data.get(USER_ID_KEY)
        return int(value) if value is not None else None

    @user_id.setter
    def user_id(self, value: Optional[int]) -> None:
        if value is None:
            if self.data.pop(USER_ID_KEY, None) is not None:
                self.modified = True
            return
        if self.data.get(USER_ID_KEY) != value:
            self.data[USER_ID_KEY] = value
            self.modified = True

    async def save(self) -> None:
        """Flush to the store. Propagates the store's error on failure."""
        await self.backend.save(self.session_id, self.data)
        self.modified = False
        self.saved = True
        self.destroyed = False

    async def destroy(self) -> None:
        """Remove the stored payload and clear the cookie on the way out."""
        self.data = {}
        self.modified = False
        self.destroyed = True
        await self.backend.delete(self.session_id)


async def load_cookie_session(
    backend: RedisSessionBackend, cookie_value: Optional[str]
) -> CookieSession:
    """Never raises: a bad cookie or unreachable store yields a fresh session."""
    if not cookie_value:
        return CookieSession(backend)
    session_id = unsign_session_id(cookie_value, settings.session_secret)
    if session_id is None:
        logger.warning("Rejected session cookie with invalid signature")
        return CookieSession(backend)
    try:
        data = await backend.load(session_id)
    except (RedisError, OSError) as exc:
        logger.warning("Session load failed — continuing with a fresh session: %s", exc)
        return CookieSession(backend)
    if data is None:
        return CookieSession(backend)
    return CookieSession(backend, session_id=session_id, data=data)


def apply_session_cookie(response: Response, session: CookieSession) -> None:
    if session.destroyed:
        response.delete_cookie(settings.session_cookie_name, path="/")
        return
    if not session.saved:
        return
    response.set_cookie(
        settings.session_cookie_name,
        sign_session_id(session.session_id, settings.session_secret),
        max_age=settings.session_max_age_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
    )


# ---------------------------------------------------------------------------
# HTTP middleware — registered in main.py
# ---------------------------------------------------------------------------

async def cookie_session_middleware(request: Request, call_next):
    backend: RedisSessionBackend = request.app.state.session_backend
    session = await load_cookie_session(
        backend, request.cookies.get(settings.session_cookie_name)
    )
    request.state.session = session

    response = await call_next(request)

    if session.modified and not session.destroyed:
        try:
            await session.save()
        except (RedisError, OSError) as exc:
            logger.warning(
                "Session save failed path=%s — identity falls back to session cache: %s",
                request.url.path, exc,
            )
    apply_session_cookie(response, session)
    return response
