"""
cleanup.py — Expiration sweep for unpaid data.

Deletes:
  - unpaid quiz attempts past expires_at (24h anonymous / 90d temporary)
  - temporary users that never paid and are past expires_at
    (their attempts, payments and AI content cascade at the database)

Scheduled by main.py lifespan every settings.cleanup_interval_seconds.
Manual run (from the project root):
    python -m bizmodel.cleanup
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store

logger = logging.getLogger(__name__)


async def run_cleanup(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, int]:
    """One sweep. Uses flush() — the caller commits."""
    now = now or datetime.now(timezone.utc)
    attempts = await store.delete_expired_quiz_attempts(db, now)
    users = await store.delete_expired_temporary_users(db, now)
    await db.flush()
    logger.info("Cleanup sweep deleted_attempts=%d deleted_temporary_users=%d", attempts, users)
    return {"deletedAttempts": attempts, "deletedUsers": users}


async def _main() -> None:
    from bizmodel.database import async_engine, session_scope

    async with session_scope() as session:
        result = await run_cleanup(session)
    await async_engine.dispose()
    print(f"Cleanup complete: {result}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )
    asyncio.run(_main())
