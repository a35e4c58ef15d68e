"""
cache.py — Redis layer for BizModelAI cookie sessions.

Namespace conventions:
  session:{session_id}       → cookie session payload dict   TTL = settings.session_max_age_seconds

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x — do NOT use aioredis separately)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param — no module-level global state
  - Logs only a truncated session_id (not data values) — no PII in logs
"""
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from bizmodel.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# TTL constants (seconds)
# ---------------------------------------------------------------------------
SESSION_TTL: int = settings.session_max_age_seconds

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
SESSION_PREFIX = "session"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_session_key(session_id: str) -> str:
    """Build Redis key for a cookie session payload: session:{session_id}"""
    return f"{SESSION_PREFIX}:{session_id}"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — stored on app.state.redis.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

async def get_session_data(
    client: aioredis.Redis, session_id: str
) -> Optional[dict]:
    """
    Retrieve a cookie session payload from Redis.
    Returns None if the session expired or never existed.
    """
    raw = await client.get(make_session_key(session_id))
    if raw is None:
        return None
    return json.loads(raw)


async def set_session_data(
    client: aioredis.Redis,
    session_id: str,
    data: dict,
    ttl: int = SESSION_TTL,
) -> None:
    """
    Store a cookie session payload with TTL.
    Overwrites existing value and resets TTL on every write.
    """
    await client.setex(make_session_key(session_id), ttl, json.dumps(data))
    logger.debug("Session data saved session_id=%s… ttl=%ds", session_id[:8], ttl)


async def delete_session_data(client: aioredis.Redis, session_id: str) -> None:
    await client.delete(make_session_key(session_id))
    logger.debug("Session data deleted session_id=%s…", session_id[:8])
