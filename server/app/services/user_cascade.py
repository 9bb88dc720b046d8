from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import InstrumentedAttribute

from app.db.models import (
    InviteCode,
    InviteRedemption,
    JournalNote,
    RateLimit,
    RefreshToken,
    Subscription,
    Trade,
    User,
)
from app.services.rate_limit import user_action_key_suffix


logger = logging.getLogger(__name__)


# Children before parents: notes point at trades, so they go first.
USER_OWNED_COLUMNS: tuple[InstrumentedAttribute[str], ...] = (
    InviteRedemption.user_id,
    JournalNote.user_id,
    Trade.user_id,
    RefreshToken.user_id,
    Subscription.user_id,
)


@dataclass
class CascadeReport:
    deleted: dict[str, int] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    invite_codes_detached: int = 0


def purge_user_rows(db: Session, *, user_id: str) -> CascadeReport:
    """Delete every row referencing ``user_id``, table by table.

    Each table runs in its own savepoint so one failure is logged and skipped
    instead of aborting the rest. Invite codes survive with ``created_by``
    cleared. The user row itself is left to the caller.
    """
    report = CascadeReport()

    for column in USER_OWNED_COLUMNS:
        table = column.class_.__tablename__
        try:
            with db.begin_nested():
                result = db.execute(delete(column.class_).where(column == user_id))
            report.deleted[table] = int(result.rowcount or 0)
        except SQLAlchemyError:
            logger.exception("cascade delete from %s failed user_id=%s", table, user_id)
            report.failed.append(table)

    try:
        with db.begin_nested():
            result = db.execute(
                delete(RateLimit).where(
                    RateLimit.key.endswith(user_action_key_suffix(user_id), autoescape=True)
                )
            )
        report.deleted[RateLimit.__tablename__] = int(result.rowcount or 0)
    except SQLAlchemyError:
        logger.exception("cascade delete from rate_limits failed user_id=%s", user_id)
        report.failed.append(RateLimit.__tablename__)

    try:
        with db.begin_nested():
            result = db.execute(
                update(InviteCode).where(InviteCode.created_by == user_id).values(created_by=None)
            )
        report.invite_codes_detached = int(result.rowcount or 0)
    except SQLAlchemyError:
        logger.exception("detaching invite codes failed user_id=%s", user_id)
        report.failed.append(InviteCode.__tablename__)

    return report


def delete_user(db: Session, *, user: User) -> CascadeReport:
    report = purge_user_rows(db, user_id=user.id)
    db.execute(delete(User).where(User.id == user.id))
    db.commit()
    return report
