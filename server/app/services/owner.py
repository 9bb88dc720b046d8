"""Owner determination and provisioning.

Every call site that needs to know whether a principal is the application
owner goes through :func:`resolve_owner`. The configured ``OWNER_EMAIL`` is the
source of truth; the ``is_owner`` flag on the subscription row is only a
fallback for owners granted through the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.core.config import settings
from app.core.email import emails_match
from app.db.models import Subscription, User


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerStatus:
    by_email: bool
    by_db: bool

    @property
    def is_owner(self) -> bool:
        return self.by_email or self.by_db


def is_owner_email(email: str | None) -> bool:
    return emails_match(email, settings.owner_email)


def _owner_flag_from_db(db: Session, user_id: str) -> bool:
    try:
        flag = db.execute(
            select(Subscription.is_owner).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("owner flag lookup failed user_id=%s", user_id)
        db.rollback()
        return False
    return bool(flag)


def owner_status(email: str | None, *, db_flag: bool) -> OwnerStatus:
    """Combine the two owner signals when the subscription row is already loaded."""
    if is_owner_email(email):
        return OwnerStatus(by_email=True, by_db=False)
    return OwnerStatus(by_email=False, by_db=db_flag)


def resolve_owner(db: Session, *, user_id: str, email: str | None) -> OwnerStatus:
    if is_owner_email(email):
        return OwnerStatus(by_email=True, by_db=False)
    return OwnerStatus(by_email=False, by_db=_owner_flag_from_db(db, user_id))


def owner_status_both(db: Session, *, user_id: str, email: str | None) -> OwnerStatus:
    """Evaluate both signals without short-circuiting (diagnostics only)."""
    return OwnerStatus(by_email=is_owner_email(email), by_db=_owner_flag_from_db(db, user_id))


def provision_owner(db: Session, user: User) -> bool:
    """Re-assert ``tier=max, is_owner=true`` for the configured owner.

    Safe to call on every session. Returns whether ``user`` is the owner; a
    failed write is logged and still reports True so the client marker is set.
    """
    if not is_owner_email(user.email):
        return False

    try:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user.id)
        ).scalar_one_or_none()
        if sub is None:
            db.add(Subscription(user_id=user.id, tier="max", is_owner=True))
        elif sub.tier != "max" or not sub.is_owner:
            sub.tier = "max"
            sub.is_owner = True
            sub.updated_at = utcnow()
        else:
            return True
        db.commit()
        logger.info("owner subscription provisioned user_id=%s", user.id)
    except SQLAlchemyError:
        logger.exception("owner provisioning failed user_id=%s", user.id)
        db.rollback()
    return True
