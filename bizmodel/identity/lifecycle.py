"""
lifecycle.py — User lifecycle across the temporary/permanent boundary.

  create_temporary_user()     — get-or-create by email; never duplicates a real email
  promote_to_permanent()      — temporary → permanent, idempotent, never reverts
  claim_anonymous_attempts()  — re-parent anonymous attempts by session key, idempotent
  claim_attempts_by_email()   — re-parent attempts of a stale temporary row with that email

Email uniqueness race: two requests may both see "no user" for a brand-new
email. The INSERT runs inside a SAVEPOINT; the loser catches IntegrityError,
the savepoint rolls back, and the winner's row is re-fetched and returned.
No lock is taken.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.errors import NotFound
from bizmodel.models.user import UserORM
from bizmodel.quiz.retention import TEMPORARY_RETENTION, expiration_for

logger = logging.getLogger(__name__)


async def _refresh_temporary_user(
    db: AsyncSession,
    user: UserORM,
    session_key: str,
    attrs: dict[str, Any],
    now: datetime,
) -> UserORM:
    """Existing temporary row: adopt the new session key, extend expiry, apply attrs."""
    user.session_id = session_key
    user.expires_at = now + TEMPORARY_RETENTION
    for field, value in attrs.items():
        if value is not None:
            setattr(user, field, value)
    await db.flush()
    logger.info("Refreshed temporary user user_id=%s", user.id)
    return user


async def create_temporary_user(
    db: AsyncSession,
    session_key: str,
    email: str,
    *,
    password_hash: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UserORM:
    """
    Return the user for `email`, creating a temporary one if none exists.

    - permanent user exists  → returned untouched (caller links to the real account)
    - temporary user exists  → session key + expiry refreshed, attrs updated
    - nobody                 → new temporary row, expires_at = now + 90 days
    Always returns a row with a non-null id.
    """
    now = now or datetime.now(timezone.utc)
    attrs = {"password_hash": password_hash, "first_name": first_name, "last_name": last_name}

    existing = await store.get_user_by_email(db, email)
    if existing is not None:
        if not existing.is_temporary:
            logger.info("Email belongs to permanent user user_id=%s — linking", existing.id)
            return existing
        return await _refresh_temporary_user(db, existing, session_key, attrs, now)

    try:
        async with db.begin_nested():
            user = await store.insert_user(
                db,
                email,
                is_temporary=True,
                is_paid=False,
                session_id=session_key,
                expires_at=now + TEMPORARY_RETENTION,
                **attrs,
            )
        return user
    except IntegrityError as exc:
        logger.info("Temporary user insert lost a race — re-fetching existing row")
        race_error = exc

    winner = await store.get_user_by_email(db, email)
    if winner is None:
        # constraint violated for some other reason
        raise race_error
    if not winner.is_temporary:
        return winner
    return await _refresh_temporary_user(db, winner, session_key, attrs, now)


async def promote_to_permanent(db: AsyncSession, user_id: int) -> bool:
    """
    Make the user permanent. Returns True only when a promotion happened.

    Idempotent: a permanent user is left untouched. Nothing in the codebase
    sets is_temporary back to True.
    """
    user = await store.get_user(db, user_id)
    if user is None:
        raise NotFound("User not found")
    if not user.is_temporary:
        return False

    user.is_temporary = False
    user.expires_at = None
    user.session_id = None
    if not user.password_hash:
        logger.warning("Promoting user without a password user_id=%s — login needs password setup", user_id)
    await store.clear_user_attempt_expiry(db, user_id)
    await db.flush()
    logger.info("Promoted user to permanent user_id=%s", user_id)
    return True


async def claim_anonymous_attempts(
    db: AsyncSession, user: UserORM, session_key: str
) -> int:
    """
    Link every unclaimed attempt created under `session_key` to `user`.

    Claimed attempts lose their session_id, so a second call finds nothing
    and changes nothing. Expiry is recomputed for the new owner's tier.
    """
    attempts = await store.list_unclaimed_attempts(db, session_key)
    for attempt in attempts:
        attempt.user_id = user.id
        attempt.session_id = None
        attempt.expires_at = expiration_for(user, attempt.completed_at)
    if attempts:
        await db.flush()
        logger.info(
            "Claimed anonymous attempts user_id=%s count=%d", user.id, len(attempts)
        )
    return len(attempts)


async def claim_attempts_by_email(
    db: AsyncSession, user: UserORM, email: str
) -> int:
    """
    Move attempts owned by a different, still-temporary user with `email`
    onto `user`. No-op when the email belongs to `user` or to a permanent account.
    """
    previous = await store.get_user_by_email(db, email)
    if previous is None or previous.id == user.id or not previous.is_temporary:
        return 0

    attempts = await store.list_quiz_attempts_for_user(db, previous.id)
    for attempt in attempts:
        attempt.user_id = user.id
        attempt.expires_at = expiration_for(user, attempt.completed_at)
    if attempts:
        await db.flush()
        logger.info(
            "Re-parented attempts from_user_id=%s to_user_id=%s count=%d",
            previous.id, user.id, len(attempts),
        )
    return len(attempts)
