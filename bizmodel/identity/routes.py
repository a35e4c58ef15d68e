"""
Auth HTTP routes — /api/auth/*

POST   /signup            — create/refresh a temporary user, establish the session
POST   /login             — permanent users only (temporary → 403 payment_required)
POST   /logout            — destroy cookie session + session cache entry
GET    /me                — current user (401 when anonymous)
PUT    /profile           — update first/last name
POST   /change-password   — verify current password, store new hash
DELETE /account           — delete the user and everything it owns
POST   /unsubscribe       — opt an email out of marketing mail
GET    /latest-quiz-data  — most recent quiz payload of the current user
GET    /session-debug     — identity diagnostics, DEBUG only

Login and signup force-save the cookie session: if the store write fails the
route answers 500 and never reports success.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from bizmodel import store
from bizmodel.config import settings
from bizmodel.database import get_db
from bizmodel.errors import (
    AuthenticationRequired,
    AuthorizationDenied,
    Conflict,
    NotFound,
    PersistenceError,
    ValidationError,
)
from bizmodel.identity.lifecycle import claim_anonymous_attempts, create_temporary_user
from bizmodel.identity.passwords import hash_password, verify_password
from bizmodel.identity.resolver import (
    RequestContext,
    clear_user_from_request,
    get_request_context,
    require_user_id,
    set_user_id_in_request_and_save,
)
from bizmodel.identity.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdateRequest,
    SignupRequest,
    SignupResponse,
    UnsubscribeRequest,
)
from bizmodel.identity.validator import validate_email, validate_new_password, validate_signup
from bizmodel.models.user import UserORM
from bizmodel.quiz.retention import expiration_for
from bizmodel.schemas import UserOut

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _establish_session(ctx: RequestContext, user_id: int, action: str) -> None:
    try:
        await set_user_id_in_request_and_save(ctx, user_id)
    except (RedisError, OSError) as exc:
        logger.error("%s session save failed user_id=%s: %s", action, user_id, exc)
        raise PersistenceError(
            f"{action} failed: session could not be saved. Please try again.",
            details=str(exc),
        ) from exc


async def _current_user(ctx: RequestContext, db: AsyncSession) -> UserORM:
    """Resolved user or 401. A session pointing at a deleted user is cleared."""
    user_id = require_user_id(ctx)
    user = await store.get_user(db, user_id)
    if user is None:
        ctx.session.user_id = None
        ctx.session_cache.delete(ctx.session_key)
        logger.info("Session referenced missing user user_id=%s — cleared", user_id)
        raise AuthenticationRequired("User not found")
    return user


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/signup", response_model=SignupResponse)
async def signup(
    body: SignupRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> SignupResponse:
    """
    Create (or refresh) a TEMPORARY user with a real password hash.
    The account becomes loginable once a report unlock payment completes.
    """
    validate_signup(body.email, body.password, body.first_name, body.last_name)

    existing = await store.get_user_by_email(db, body.email)
    if existing is not None and not existing.is_temporary:
        raise Conflict(
            "User already exists. Please log in instead.",
            extra={"userType": "permanent", "suggestion": "login"},
        )

    password_hash = await hash_password(body.password)
    user = await create_temporary_user(
        db,
        ctx.session_key,
        body.email,
        password_hash=password_hash,
        first_name=body.first_name.strip(),
        last_name=body.last_name.strip(),
    )
    if not user.is_temporary:
        # a permanent account appeared for this email while we were hashing
        raise Conflict(
            "User already exists. Please log in instead.",
            extra={"userType": "permanent", "suggestion": "login"},
        )

    await claim_anonymous_attempts(db, user, ctx.session_key)
    if body.quiz_data:
        now = datetime.now(timezone.utc)
        await store.create_quiz_attempt(
            db,
            body.quiz_data,
            user_id=user.id,
            completed_at=now,
            expires_at=expiration_for(user, now),
        )

    # the user row must be durable before a session can point at it
    await db.commit()
    await _establish_session(ctx, user.id, "Signup")

    logger.info("Signup complete user_id=%s", user.id)
    return SignupResponse.model_validate(user)


@router.post("/login", response_model=UserOut)
async def login(
    body: LoginRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")

    user = await store.get_user_by_email(db, body.email)
    if user is None:
        raise AuthenticationRequired("Invalid email or password")

    if user.is_temporary:
        raise AuthorizationDenied(
            "Account setup incomplete. Please complete your purchase to access your account.",
            extra={"userType": "temporary", "suggestion": "payment_required"},
        )
    if not user.password_hash:
        raise AuthorizationDenied(
            "No password is set for this account.",
            extra={"userType": "permanent", "suggestion": "password_setup_required"},
        )
    if not await verify_password(body.password, user.password_hash):
        raise AuthenticationRequired("Invalid email or password")

    await _establish_session(ctx, user.id, "Login")
    logger.info("Login success user_id=%s", user.id)
    return UserOut.model_validate(user)


@router.post("/logout")
async def logout(ctx: RequestContext = Depends(get_request_context)) -> dict:
    try:
        await clear_user_from_request(ctx)
    except (RedisError, OSError) as exc:
        raise PersistenceError("Logout failed", details=str(exc)) from exc
    return {"success": True}


@router.get("/me", response_model=UserOut)
async def me(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    return UserOut.model_validate(await _current_user(ctx, db))


@router.put("/profile", response_model=UserOut)
async def update_profile(
    body: ProfileUpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await _current_user(ctx, db)
    for field in ("first_name", "last_name"):
        value: Optional[str] = getattr(body, field)
        if value is None:
            continue
        if not value.strip():
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be empty")
        setattr(user, field, value.strip())
    await db.flush()
    return UserOut.model_validate(user)


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await _current_user(ctx, db)
    if not user.password_hash or not await verify_password(body.current_password, user.password_hash):
        raise AuthenticationRequired("Current password is incorrect")
    validate_new_password(body.new_password)
    user.password_hash = await hash_password(body.new_password)
    await db.flush()
    logger.info("Password changed user_id=%s", user.id)
    return {"success": True}


@router.delete("/account")
async def delete_account(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await _current_user(ctx, db)
    await store.delete_user(db, user)
    await db.commit()
    try:
        await clear_user_from_request(ctx)
    except (RedisError, OSError) as exc:
        # account is gone either way; the dangling session resolves to 401 on /me
        logger.warning("Session cleanup after account deletion failed: %s", exc)
    return {"success": True}


@router.post("/unsubscribe")
async def unsubscribe(
    body: UnsubscribeRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Same answer whether or not the email is known — no account enumeration."""
    validate_email(body.email)
    user = await store.get_user_by_email(db, body.email)
    if user is not None and not user.is_unsubscribed:
        user.is_unsubscribed = True
        await db.flush()
        logger.info("Unsubscribed user_id=%s", user.id)
    return {"success": True}


@router.get("/latest-quiz-data")
async def latest_quiz_data(
    ctx: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
) -> Optional[dict]:
    user = await _current_user(ctx, db)
    attempt = await store.get_latest_quiz_attempt(db, user.id)
    if attempt is None:
        return None
    return {
        "quizAttemptId": attempt.id,
        "quizData": attempt.quiz_data,
        "completedAt": attempt.completed_at.isoformat(),
        "isPaid": attempt.is_paid,
    }


@router.get("/session-debug")
async def session_debug(ctx: RequestContext = Depends(get_request_context)) -> dict:
    if not settings.debug:
        raise NotFound("Not found")
    return {
        "sessionKey": ctx.session_key,
        "cookieUserId": ctx.session.user_id,
        "cacheUserId": ctx.session_cache.get(ctx.session_key),
        "resolvedUserId": ctx.resolved_user_id,
        "sessionIsNew": ctx.session.is_new,
        "sessionCacheSize": len(ctx.session_cache),
    }
