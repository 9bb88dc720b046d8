"""Invite code redemption.

Validation runs in a fixed order and the first failing check decides the
outcome. The subscription upsert, the redemption row and the usage increment
commit together; the unique (invite_code_id, user_id) constraint is what
actually prevents a double redemption under concurrency, the existence check
only produces the friendly answer in the common case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.db.models import InviteCode, InviteRedemption, Subscription


logger = logging.getLogger(__name__)


REDEMPTION_ERRORS: dict[str, str] = {
    "invalid_code": "Invalid code",
    "code_inactive": "Code is no longer active",
    "code_expired": "Code has expired",
    "max_uses_reached": "Code has reached maximum uses",
    "already_redeemed": "You already redeemed this code",
}


@dataclass(frozen=True)
class RedemptionResult:
    success: bool
    tier: str | None = None
    reason: str | None = None

    @property
    def error(self) -> str | None:
        if self.reason is None:
            return None
        return REDEMPTION_ERRORS[self.reason]

    @classmethod
    def failed(cls, reason: str) -> "RedemptionResult":
        return cls(success=False, reason=reason)


def normalize_code(raw: str) -> str:
    return raw.strip().upper()


def _already_redeemed(db: Session, *, invite_id: str, user_id: str) -> bool:
    found = db.execute(
        select(InviteRedemption.id).where(
            InviteRedemption.invite_code_id == invite_id,
            InviteRedemption.user_id == user_id,
        )
    ).first()
    return found is not None


def _exhausted(invite: InviteCode) -> bool:
    return invite.max_uses is not None and invite.current_uses >= invite.max_uses


def first_failure(
    db: Session, invite: InviteCode | None, *, user_id: str, now: datetime
) -> str | None:
    if invite is None:
        return "invalid_code"
    if not invite.is_active:
        return "code_inactive"
    if invite.expires_at is not None and invite.expires_at <= now:
        return "code_expired"
    if _exhausted(invite):
        return "max_uses_reached"
    if _already_redeemed(db, invite_id=invite.id, user_id=user_id):
        return "already_redeemed"
    return None


def upsert_subscription_tier(
    db: Session, *, user_id: str, tier: str, code: str, now: datetime
) -> None:
    """Insert or update the user's subscription tier in one statement.

    A row written by another session between our read and our commit must
    not turn the redemption into a unique violation on ``user_id``, so the
    conflict is resolved by the database. Owner and trial fields are never
    touched.
    """
    dialect = db.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert_fn(Subscription).values(
            user_id=user_id,
            tier=tier,
            granted_by_invite_code=code,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={"tier": tier, "granted_by_invite_code": code, "updated_at": now},
        )
        _ = db.execute(stmt)
        return

    sub = db.execute(
        select(Subscription).where(Subscription.user_id == user_id).with_for_update()
    ).scalar_one_or_none()
    if sub is None:
        db.add(
            Subscription(
                user_id=user_id,
                tier=tier,
                granted_by_invite_code=code,
                created_at=now,
                updated_at=now,
            )
        )
        return
    sub.tier = tier
    sub.granted_by_invite_code = code
    sub.updated_at = now


def redeem_invite_code(
    db: Session, *, code: str, user_id: str, now: datetime | None = None
) -> RedemptionResult:
    now = now or utcnow()
    code = normalize_code(code)

    invite = db.execute(
        select(InviteCode).where(InviteCode.code == code).with_for_update()
    ).scalar_one_or_none()

    reason = first_failure(db, invite, user_id=user_id, now=now)
    if reason is not None or invite is None:
        db.rollback()
        return RedemptionResult.failed(reason or "invalid_code")

    invite_id = invite.id
    tier = invite.grants_tier

    upsert_subscription_tier(db, user_id=user_id, tier=tier, code=code, now=now)
    db.add(InviteRedemption(invite_code_id=invite_id, user_id=user_id, created_at=now))
    invite.current_uses = InviteCode.current_uses + 1
    invite.updated_at = now

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if _already_redeemed(db, invite_id=invite_id, user_id=user_id):
            return RedemptionResult.failed("already_redeemed")
        current = db.get(InviteCode, invite_id)
        if current is None:
            return RedemptionResult.failed("invalid_code")
        if _exhausted(current):
            return RedemptionResult.failed("max_uses_reached")
        raise

    logger.info("invite redeemed invite_id=%s user_id=%s tier=%s", invite_id, user_id, tier)
    return RedemptionResult(success=True, tier=tier)
