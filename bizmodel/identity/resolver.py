"""
resolver.py — Identity Resolver, Session Writer and RequestContext.

Resolution order for every request:
  1. cookie session carries userId          → return it (fast path)
  2. session cache hit for "<ip>-<user-agent>" and younger than 24h
                                            → copy userId back into the cookie session, return it
  3. otherwise                              → None (anonymous; the route decides 401 or not)

Routes never re-derive identity themselves: they depend on get_request_context()
and read ctx.resolved_user_id.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from starlette.datastructures import Headers

from bizmodel.errors import AuthenticationRequired
from bizmodel.identity.cookie_session import CookieSession
from bizmodel.identity.session_cache import SessionCache

logger = logging.getLogger(__name__)


def get_session_key(request: Request) -> str:
    """Derived fallback key: client IP (first X-Forwarded-For hop) + user-agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip() or "unknown"
    elif request.client is not None and request.client.host:
        ip = request.client.host
    else:
        ip = "unknown"
    user_agent = request.headers.get("user-agent") or "unknown"
    return f"{ip}-{user_agent}"


def resolve_user_id(
    session: CookieSession,
    session_key: str,
    cache: SessionCache,
) -> Optional[int]:
    """
    Effective user id for a request, or None.

    Side effect: on a cache hit the cookie session is repaired in place
    (session.user_id is set, which marks it modified so the middleware saves it).
    """
    if session.user_id is not None:
        return session.user_id

    cached_user_id = cache.get(session_key)
    if cached_user_id is None:
        return None

    session.user_id = cached_user_id
    logger.info("Recovered identity from session cache user_id=%s", cached_user_id)
    return cached_user_id


@dataclass(frozen=True)
class RequestContext:
    """Identity facts for one request, built once by get_request_context()."""
    resolved_user_id: Optional[int]
    session_key: str
    headers: Headers
    session: CookieSession
    session_cache: SessionCache

    @property
    def is_authenticated(self) -> bool:
        return self.resolved_user_id is not None


async def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency — runs the Identity Resolver once per request."""
    session: CookieSession = request.state.session
    cache: SessionCache = request.app.state.session_cache
    session_key = get_session_key(request)
    return RequestContext(
        resolved_user_id=resolve_user_id(session, session_key, cache),
        session_key=session_key,
        headers=request.headers,
        session=session,
        session_cache=cache,
    )


def require_user_id(ctx: RequestContext, message: str = "Not authenticated") -> int:
    if ctx.resolved_user_id is None:
        raise AuthenticationRequired(message)
    return ctx.resolved_user_id


# ---------------------------------------------------------------------------
# Session Writer
# ---------------------------------------------------------------------------

def set_user_id_in_request(ctx: RequestContext, user_id: int) -> None:
    """
    Put user_id in the cookie session and refresh the session cache entry.
    Non-blocking: the cookie session is flushed by the middleware after the
    handler returns, and a failed flush is only logged.
    """
    ctx.session.user_id = user_id
    ctx.session_cache.set(ctx.session_key, user_id)


async def set_user_id_in_request_and_save(ctx: RequestContext, user_id: int) -> None:
    """
    Same as set_user_id_in_request, then force the cookie session to the store.
    The store's error propagates — the caller must answer 5xx, never success.
    """
    set_user_id_in_request(ctx, user_id)
    await ctx.session.save()
    logger.info("Session established user_id=%s", user_id)


async def clear_user_from_request(ctx: RequestContext) -> None:
    """Logout / account deletion: destroy the cookie session and the cache entry."""
    ctx.session_cache.delete(ctx.session_key)
    await ctx.session.destroy()
