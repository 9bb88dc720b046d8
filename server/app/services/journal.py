from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Trade
from app.services.trade_stats import TradeRecord, record_from_row


def load_user_trades(db: Session, user_id: str) -> list[TradeRecord]:
    rows = db.execute(
        select(Trade)
        .where(Trade.user_id == user_id)
        .order_by(Trade.open_timestamp.asc(), Trade.id.asc())
    ).scalars()
    return [record_from_row(r) for r in rows]


def get_user_trade(db: Session, *, user_id: str, trade_id: str) -> Trade | None:
    """The trade, or None when it does not exist or belongs to someone else."""
    row = db.get(Trade, trade_id)
    if row is None or row.user_id != user_id:
        return None
    return row
