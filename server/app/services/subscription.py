from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import TIERS, Subscription
from app.services.owner import is_owner_email


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionView:
    tier: str
    is_owner: bool = False
    is_trial: bool = False
    trial_end: datetime | None = None
    granted_by_invite_code: str | None = None


FREE_SUBSCRIPTION = SubscriptionView(tier="free")
OWNER_SUBSCRIPTION = SubscriptionView(tier="max", is_owner=True)


def tier_rank(tier: str) -> int:
    try:
        return TIERS.index(tier)
    except ValueError:
        return 0


def tier_allows(tier: str, minimum: str) -> bool:
    return tier_rank(tier) >= tier_rank(minimum)


def subscription_view(row: Subscription | None, *, owner_by_email: bool) -> SubscriptionView:
    """The one mapping from a subscription row to what clients see."""
    if owner_by_email:
        return OWNER_SUBSCRIPTION
    if row is None:
        return FREE_SUBSCRIPTION
    return SubscriptionView(
        tier=row.tier,
        is_owner=row.is_owner,
        is_trial=row.is_trial,
        trial_end=row.trial_end,
        granted_by_invite_code=row.granted_by_invite_code,
    )


def resolve_subscription(db: Session, *, user_id: str, email: str | None) -> SubscriptionView:
    if is_owner_email(email):
        return OWNER_SUBSCRIPTION

    try:
        row = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
    except SQLAlchemyError:
        # A flaky read must not lock users out of the free tier.
        logger.exception("subscription lookup failed user_id=%s", user_id)
        db.rollback()
        return FREE_SUBSCRIPTION

    return subscription_view(row, owner_by_email=False)


def ensure_free_subscription(db: Session, *, user_id: str) -> bool:
    """Insert a free row unless one exists. Never overwrites. Best-effort."""
    try:
        exists = db.execute(
            select(Subscription.id).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
        if exists is not None:
            return False
        db.add(Subscription(user_id=user_id, tier="free"))
        db.commit()
        return True
    except IntegrityError:
        # Lost a race with another writer; the row exists now.
        db.rollback()
        return False
    except SQLAlchemyError:
        logger.exception("free subscription insert failed user_id=%s", user_id)
        db.rollback()
        return False
