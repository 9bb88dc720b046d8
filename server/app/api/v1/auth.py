# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
# pyright: reportDeprecated=false
from __future__ import annotations

import logging
from datetime import timedelta
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_user, unauthorized
from app.core.clock import utcnow
from app.core.config import settings
from app.core.email import normalize_email
from app.core.security import (
    encode_access_token,
    hash_password,
    hash_refresh_token,
    new_refresh_token,
    validate_password_policy,
    verify_password,
)
from app.db.models import RefreshToken, User
from app.db.session import get_db
from app.services.owner import provision_owner
from app.services.rate_limit import RateLimiter, auth_rate_limit_key
from app.services.subscription import ensure_free_subscription


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    password: str = Field(..., min_length=8, examples=["password123"])


class LoginRequest(BaseModel):
    email: str = Field(..., examples=["user@example.com"])
    password: str = Field(..., examples=["password123"])


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    is_owner: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class MeResponse(BaseModel):
    user_id: str
    email: str
    email_confirmed: bool


class SignupFinalizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(None, alias="userId")


class SuccessResponse(BaseModel):
    success: bool = True


def _rate_limiter() -> RateLimiter:
    return RateLimiter(
        enabled=settings.auth_rate_limit_enabled,
        max_attempts=settings.auth_rate_limit_max_failures,
        window_seconds=settings.auth_rate_limit_window_seconds,
    )


def _client_ip(request: Request) -> str | None:
    if request.client is None:
        return None
    return request.client.host


def _raise_rate_limited(*, retry_after_seconds: int) -> NoReturn:
    headers: dict[str, str] | None = None
    if retry_after_seconds > 0:
        headers = {"Retry-After": str(int(retry_after_seconds))}
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many attempts",
        headers=headers,
    )


def _enforce_rate_limit(db: Session, limiter: RateLimiter, *, key: str) -> None:
    check = limiter.check(db, key=key)
    if check.blocked:
        _raise_rate_limited(retry_after_seconds=check.retry_after_seconds)


def _record_failure(db: Session, limiter: RateLimiter, *, key: str) -> None:
    try:
        limiter.record(db, key=key)
    except SQLAlchemyError:
        logger.warning("auth rate limit bookkeeping failed key_scope=%s", key.split("|", 1)[0])
        db.rollback()


def _issue_token_pair(db: Session, user: User, *, is_owner: bool) -> TokenPair:
    access = encode_access_token(
        user.id,
        secret=settings.auth_access_token_secret,
        expires_in_seconds=settings.auth_access_token_ttl_seconds,
    )
    refresh_raw = new_refresh_token()
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hash_refresh_token(refresh_raw),
            expires_at=utcnow() + timedelta(days=settings.auth_refresh_token_ttl_days),
            revoked_at=None,
        )
    )
    return TokenPair(access_token=access, refresh_token=refresh_raw, is_owner=is_owner)


@router.post(
    "/register",
    response_model=TokenPair,
    status_code=status.HTTP_201_CREATED,
    operation_id="auth_register",
)
async def register(
    payload: RegisterRequest, request: Request, db: Session = Depends(get_db)
) -> TokenPair:
    limiter = _rate_limiter()
    key = auth_rate_limit_key(scope="auth_register", ip=_client_ip(request))
    _enforce_rate_limit(db, limiter, key=key)

    email = normalize_email(payload.email)
    try:
        validate_password_policy(payload.password)
    except ValueError:
        _record_failure(db, limiter, key=key)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password does not meet security requirements",
        )

    existing = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing is not None:
        _record_failure(db, limiter, key=key)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    user = User(email=email, password_hash=hash_password(payload.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        _record_failure(db, limiter, key=key)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    _ = ensure_free_subscription(db, user_id=user.id)
    is_owner = provision_owner(db, user)

    pair = _issue_token_pair(db, user, is_owner=is_owner)
    limiter.reset(db, key=key)
    db.commit()
    logger.info("user registered user_id=%s", user.id)
    return pair


@router.post(
    "/login",
    response_model=TokenPair,
    operation_id="auth_login",
)
async def login(
    payload: LoginRequest, request: Request, db: Session = Depends(get_db)
) -> TokenPair:
    email = normalize_email(payload.email)
    limiter = _rate_limiter()
    key = auth_rate_limit_key(scope="auth_login", ip=_client_ip(request), identifier=email)
    _enforce_rate_limit(db, limiter, key=key)

    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        _record_failure(db, limiter, key=key)
        unauthorized("Bad credentials")

    is_owner = provision_owner(db, user)

    pair = _issue_token_pair(db, user, is_owner=is_owner)
    limiter.reset(db, key=key)
    db.commit()
    return pair


@router.post(
    "/refresh",
    response_model=TokenPair,
    operation_id="auth_refresh",
)
async def refresh(
    payload: RefreshRequest, request: Request, db: Session = Depends(get_db)
) -> TokenPair:
    limiter = _rate_limiter()
    key = auth_rate_limit_key(scope="auth_refresh", ip=_client_ip(request))
    _enforce_rate_limit(db, limiter, key=key)

    now = utcnow()
    try:
        token_hash = hash_refresh_token(payload.refresh_token)
    except ValueError:
        _record_failure(db, limiter, key=key)
        unauthorized("Invalid refresh token")
    rt = db.execute(
        select(RefreshToken).where(RefreshToken.token_hash == token_hash)
    ).scalar_one_or_none()
    if rt is None or rt.revoked_at is not None or rt.expires_at <= now:
        _record_failure(db, limiter, key=key)
        unauthorized("Invalid refresh token")

    user = db.get(User, rt.user_id)
    if user is None:
        _record_failure(db, limiter, key=key)
        unauthorized("Invalid refresh token")

    # Rotate: the presented token is spent either way.
    rt.revoked_at = now
    is_owner = provision_owner(db, user)
    pair = _issue_token_pair(db, user, is_owner=is_owner)
    limiter.reset(db, key=key)
    db.commit()
    return pair


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="auth_logout",
)
async def logout(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    _ = db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    )
    db.commit()
    return None


@router.get(
    "/me",
    response_model=MeResponse,
    operation_id="auth_me",
)
async def me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user_id=user.id,
        email=user.email,
        email_confirmed=user.email_confirmed_at is not None,
    )


@router.post(
    "/signup/finalize",
    response_model=SuccessResponse,
    operation_id="auth_signup_finalize",
)
async def signup_finalize(
    payload: SignupFinalizeRequest, db: Session = Depends(get_db)
) -> SuccessResponse:
    user_id = (payload.user_id or "").strip()
    if user_id == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing user ID.")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if user.email_confirmed_at is None:
        user.email_confirmed_at = utcnow()
        db.commit()

    _ = ensure_free_subscription(db, user_id=user.id)
    return SuccessResponse()
