from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import JournalNote, Trade


logger = logging.getLogger(__name__)


def closest_trade_id(at: datetime, trades: Sequence[tuple[str, datetime]]) -> str | None:
    """Id of the trade opened nearest to ``at``; ties go to the earliest trade.

    ``trades`` must be sorted by open timestamp ascending.
    """
    if not trades:
        return None
    best_id, best_ts = trades[0]
    best_diff = abs((best_ts - at).total_seconds())
    for trade_id, ts in trades[1:]:
        diff = abs((ts - at).total_seconds())
        if diff < best_diff:
            best_id, best_diff = trade_id, diff
    return best_id


def auto_link_notes(db: Session, *, user_id: str) -> int:
    """Attach flagged, unlinked notes to their nearest trade and clear the flag."""
    notes = list(
        db.execute(
            select(JournalNote).where(
                JournalNote.user_id == user_id,
                JournalNote.auto_link_on_import.is_(True),
                JournalNote.trade_id.is_(None),
            )
        )
        .scalars()
        .all()
    )
    if not notes:
        return 0

    trades = [
        (row.id, row.open_timestamp)
        for row in db.execute(
            select(Trade.id, Trade.open_timestamp)
            .where(Trade.user_id == user_id)
            .order_by(Trade.open_timestamp.asc(), Trade.id.asc())
        ).all()
    ]
    if not trades:
        return 0

    linked = 0
    for note in notes:
        trade_id = closest_trade_id(note.created_at, trades)
        if trade_id is None:
            continue
        note.trade_id = trade_id
        note.auto_link_on_import = False
        linked += 1
    db.commit()

    logger.info("auto-linked notes user_id=%s linked=%d", user_id, linked)
    return linked
