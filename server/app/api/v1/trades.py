# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
# pyright: reportDeprecated=false
from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_user
from app.core.clock import to_naive_utc
from app.db.models import Trade, User
from app.db.session import get_db
from app.services.journal import get_user_trade, load_user_trades
from app.services.trade_stats import (
    TradeRecord,
    build_equity_curve,
    calculate_daily_pnl,
    calculate_stats,
    calculate_trade_pnl,
    encode_tags,
    group_trades_by_day,
    group_trades_by_field,
    group_trades_by_symbol,
    group_trades_by_tag,
    record_from_row,
)


router = APIRouter(prefix="/trades", tags=["trades"])


class TradeCreateRequest(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=40)
    position: Literal["long", "short"]
    entry_price: float = Field(..., gt=0)
    exit_price: float | None = Field(None, gt=0)
    quantity: float = Field(..., gt=0)
    fees: float = Field(0.0, ge=0)
    pnl: float | None = None
    open_timestamp: datetime
    close_timestamp: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    emotion: str | None = Field(None, max_length=50)
    setup_type: str | None = Field(None, max_length=100)
    notes: str | None = None

    @model_validator(mode="after")
    def _close_after_open(self) -> "TradeCreateRequest":
        if self.close_timestamp is None:
            return self
        if to_naive_utc(self.close_timestamp) < to_naive_utc(self.open_timestamp):
            raise ValueError("close_timestamp must not be before open_timestamp")
        return self


class TradeItem(BaseModel):
    id: str
    symbol: str
    position: str
    entry_price: float
    exit_price: float | None
    quantity: float
    fees: float
    pnl: float | None
    open_timestamp: datetime
    close_timestamp: datetime | None
    tags: list[str]
    emotion: str | None
    setup_type: str | None
    notes: str | None


class TradeListResponse(BaseModel):
    items: list[TradeItem] = Field(default_factory=list)
    next_offset: int | None = None


class TradeStatsResponse(BaseModel):
    total_trades: int
    wins: int
    losses: int
    breakeven: int
    win_rate: float
    avg_trade_pnl: float
    profit_factor: float
    closed_pnl: float
    unrealized_pnl: float


class DailyPnlItem(BaseModel):
    date: date
    pnl: float
    trade_count: int


class EquityPointItem(BaseModel):
    date: date
    equity: float


class GroupItem(BaseModel):
    key: str
    label: str
    trade_count: int
    total_pnl: float
    win_rate: float
    avg_pnl: float
    trade_ids: list[str]


def _item(record: TradeRecord) -> TradeItem:
    return TradeItem(
        id=record.id,
        symbol=record.symbol,
        position=record.position,
        entry_price=record.entry_price,
        exit_price=record.exit_price,
        quantity=record.quantity,
        fees=record.fees,
        pnl=record.pnl,
        open_timestamp=record.open_timestamp,
        close_timestamp=record.close_timestamp,
        tags=list(record.tags),
        emotion=record.emotion,
        setup_type=record.setup_type,
        notes=record.notes,
    )


@router.post(
    "",
    response_model=TradeItem,
    status_code=status.HTTP_201_CREATED,
    operation_id="trades_create",
)
async def trades_create(
    payload: TradeCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TradeItem:
    close_ts = to_naive_utc(payload.close_timestamp) if payload.close_timestamp else None
    exit_price = payload.exit_price
    pnl = payload.pnl
    if pnl is None and close_ts is not None and exit_price is not None:
        pnl = calculate_trade_pnl(
            TradeRecord(
                id="",
                symbol=payload.symbol,
                position=payload.position,
                entry_price=payload.entry_price,
                quantity=payload.quantity,
                open_timestamp=to_naive_utc(payload.open_timestamp),
                exit_price=exit_price,
                fees=payload.fees,
            )
        )

    row = Trade(
        user_id=user.id,
        symbol=payload.symbol.strip().upper(),
        position=payload.position,
        entry_price=payload.entry_price,
        exit_price=exit_price,
        quantity=payload.quantity,
        fees=payload.fees,
        pnl=pnl,
        open_timestamp=to_naive_utc(payload.open_timestamp),
        close_timestamp=close_ts,
        tags_json=encode_tags(payload.tags),
        emotion=payload.emotion,
        setup_type=payload.setup_type,
        notes=payload.notes,
    )
    db.add(row)
    db.commit()
    return _item(record_from_row(row))


@router.get("", response_model=TradeListResponse, operation_id="trades_list")
async def trades_list(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TradeListResponse:
    rows = list(
        db.execute(
            select(Trade)
            .where(Trade.user_id == user.id)
            .order_by(Trade.open_timestamp.desc(), Trade.id.desc())
            .offset(offset)
            .limit(limit + 1)
        )
        .scalars()
        .all()
    )
    more = len(rows) > limit
    page = rows[:limit]
    return TradeListResponse(
        items=[_item(record_from_row(r)) for r in page],
        next_offset=(offset + len(page)) if more else None,
    )


@router.get("/stats", response_model=TradeStatsResponse, operation_id="trades_stats")
async def trades_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TradeStatsResponse:
    s = calculate_stats(load_user_trades(db, user.id))
    return TradeStatsResponse(
        total_trades=s.total_trades,
        wins=s.wins,
        losses=s.losses,
        breakeven=s.breakeven,
        win_rate=s.win_rate,
        avg_trade_pnl=s.avg_trade_pnl,
        profit_factor=s.profit_factor,
        closed_pnl=s.closed_pnl,
        unrealized_pnl=s.unrealized_pnl,
    )


@router.get("/daily-pnl", response_model=list[DailyPnlItem], operation_id="trades_daily_pnl")
async def trades_daily_pnl(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[DailyPnlItem]:
    return [
        DailyPnlItem(date=d.date, pnl=d.pnl, trade_count=d.trade_count)
        for d in calculate_daily_pnl(load_user_trades(db, user.id))
    ]


@router.get(
    "/equity-curve",
    response_model=list[EquityPointItem],
    operation_id="trades_equity_curve",
)
async def trades_equity_curve(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[EquityPointItem]:
    daily = calculate_daily_pnl(load_user_trades(db, user.id))
    return [EquityPointItem(date=p.date, equity=p.equity) for p in build_equity_curve(daily)]


@router.get("/groups", response_model=list[GroupItem], operation_id="trades_groups")
async def trades_groups(
    by: Literal["symbol", "tag", "day", "position"] = Query("symbol"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[GroupItem]:
    trades = load_user_trades(db, user.id)
    if by == "symbol":
        groups = group_trades_by_symbol(trades)
    elif by == "tag":
        groups = group_trades_by_tag(trades)
    elif by == "day":
        groups = group_trades_by_day(trades)
    else:
        groups = group_trades_by_field(trades, "position")
    return [
        GroupItem(
            key=g.key,
            label=g.label,
            trade_count=g.trade_count,
            total_pnl=g.total_pnl,
            win_rate=g.win_rate,
            avg_pnl=g.avg_pnl,
            trade_ids=list(g.trade_ids),
        )
        for g in groups
    ]


@router.delete(
    "/{trade_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="trades_delete",
)
async def trades_delete(
    trade_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    row = get_user_trade(db, user_id=user.id, trade_id=trade_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trade not found")
    db.delete(row)
    db.commit()
    return None
