"""Pure trade analytics: trades in, numbers out.

Everything here works on :class:`TradeRecord` so it can be exercised without a
database. Open trades (no close timestamp) never count towards realized P&L.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import cast

from app.db.models import Trade


PROFIT_FACTOR_CAP = 999.99
UNTAGGED = "untagged"


@dataclass(frozen=True)
class TradeRecord:
    id: str
    symbol: str
    position: str
    entry_price: float
    quantity: float
    open_timestamp: datetime
    exit_price: float | None = None
    close_timestamp: datetime | None = None
    fees: float = 0.0
    pnl: float | None = None
    tags: tuple[str, ...] = ()
    emotion: str | None = None
    setup_type: str | None = None
    notes: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.close_timestamp is not None


@dataclass(frozen=True)
class TradeStats:
    total_trades: int
    wins: int
    losses: int
    breakeven: int
    win_rate: float
    avg_trade_pnl: float
    profit_factor: float
    closed_pnl: float
    unrealized_pnl: float


@dataclass(frozen=True)
class DailyPnl:
    date: date
    pnl: float
    trade_count: int


@dataclass(frozen=True)
class EquityPoint:
    date: date
    equity: float


@dataclass(frozen=True)
class GroupSummary:
    key: str
    label: str
    trade_count: int
    total_pnl: float
    win_rate: float
    avg_pnl: float
    trade_ids: list[str] = field(default_factory=list)


def decode_tags(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        obj = cast(object, json.loads(raw))
    except ValueError:
        return ()
    if not isinstance(obj, list):
        return ()
    return tuple(str(t) for t in cast(list[object], obj) if str(t).strip())


def encode_tags(tags: Iterable[str]) -> str:
    cleaned: list[str] = []
    for tag in tags:
        t = tag.strip()
        if t and t not in cleaned:
            cleaned.append(t)
    return json.dumps(cleaned, ensure_ascii=False)


def record_from_row(row: Trade) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        symbol=row.symbol,
        position=row.position,
        entry_price=row.entry_price,
        quantity=row.quantity,
        open_timestamp=row.open_timestamp,
        exit_price=row.exit_price,
        close_timestamp=row.close_timestamp,
        fees=row.fees,
        pnl=row.pnl,
        tags=decode_tags(row.tags_json),
        emotion=row.emotion,
        setup_type=row.setup_type,
        notes=row.notes,
    )


def calculate_trade_pnl(trade: TradeRecord) -> float | None:
    """Long: (exit - entry) * qty - fees. Short: (entry - exit) * qty - fees."""
    if trade.exit_price is None:
        return None
    direction = 1.0 if trade.position == "long" else -1.0
    return (trade.exit_price - trade.entry_price) * direction * trade.quantity - trade.fees


def realized_pnl(trade: TradeRecord) -> float:
    if trade.pnl is not None:
        return trade.pnl
    return calculate_trade_pnl(trade) or 0.0


def calculate_stats(trades: Iterable[TradeRecord]) -> TradeStats:
    closed: list[TradeRecord] = []
    unrealized = 0.0
    for t in trades:
        if t.is_closed:
            closed.append(t)
        else:
            unrealized += calculate_trade_pnl(t) or 0.0

    pnls = [realized_pnl(t) for t in closed]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    gross_win = sum(wins)
    gross_loss = abs(sum(losses))

    if gross_loss == 0:
        profit_factor = PROFIT_FACTOR_CAP if gross_win > 0 else 0.0
    else:
        profit_factor = min(round(gross_win / gross_loss, 2), PROFIT_FACTOR_CAP)

    closed_pnl = sum(pnls)
    n = len(closed)
    return TradeStats(
        total_trades=n,
        wins=len(wins),
        losses=len(losses),
        breakeven=n - len(wins) - len(losses),
        win_rate=(len(wins) / n) * 100 if n else 0.0,
        avg_trade_pnl=closed_pnl / n if n else 0.0,
        profit_factor=profit_factor,
        closed_pnl=closed_pnl,
        unrealized_pnl=unrealized,
    )


def calculate_daily_pnl(trades: Iterable[TradeRecord]) -> list[DailyPnl]:
    buckets: dict[date, tuple[float, int]] = {}
    for t in trades:
        if t.close_timestamp is None:
            continue
        day = t.close_timestamp.date()
        pnl, count = buckets.get(day, (0.0, 0))
        buckets[day] = (pnl + realized_pnl(t), count + 1)
    return [
        DailyPnl(date=day, pnl=pnl, trade_count=count)
        for day, (pnl, count) in sorted(buckets.items())
    ]


def build_equity_curve(daily: Iterable[DailyPnl]) -> list[EquityPoint]:
    equity = 0.0
    out: list[EquityPoint] = []
    for d in daily:
        equity += d.pnl
        out.append(EquityPoint(date=d.date, equity=equity))
    return out


def _summarize(key: str, label: str, trades: list[TradeRecord]) -> GroupSummary:
    pnls = [realized_pnl(t) for t in trades if t.is_closed]
    total = sum(pnls)
    wins = sum(1 for p in pnls if p > 0)
    return GroupSummary(
        key=key,
        label=label,
        trade_count=len(trades),
        total_pnl=total,
        win_rate=(wins / len(pnls)) * 100 if pnls else 0.0,
        avg_pnl=total / len(pnls) if pnls else 0.0,
        trade_ids=[t.id for t in trades],
    )


def _bucket(
    trades: Iterable[TradeRecord], keys_for: Callable[[TradeRecord], Iterable[str]]
) -> dict[str, list[TradeRecord]]:
    buckets: dict[str, list[TradeRecord]] = {}
    for t in trades:
        for key in keys_for(t):
            buckets.setdefault(key, []).append(t)
    return buckets


def _by_total_pnl(groups: Iterable[GroupSummary]) -> list[GroupSummary]:
    return sorted(groups, key=lambda g: g.total_pnl, reverse=True)


def group_trades_by_symbol(trades: Iterable[TradeRecord]) -> list[GroupSummary]:
    buckets = _bucket(trades, lambda t: (t.symbol,))
    return _by_total_pnl(_summarize(k, k, v) for k, v in buckets.items())


def group_trades_by_tag(trades: Iterable[TradeRecord]) -> list[GroupSummary]:
    # A trade with several tags contributes to each of them.
    buckets = _bucket(trades, lambda t: t.tags or (UNTAGGED,))
    return _by_total_pnl(_summarize(k, k, v) for k, v in buckets.items())


def group_trades_by_day(trades: Iterable[TradeRecord]) -> list[GroupSummary]:
    buckets = _bucket(trades, lambda t: (t.open_timestamp.date().isoformat(),))
    groups = [
        _summarize(k, date.fromisoformat(k).strftime("%a, %b %d").replace(" 0", " "), v)
        for k, v in buckets.items()
    ]
    return sorted(groups, key=lambda g: g.key, reverse=True)


def group_trades_by_field(
    trades: Iterable[TradeRecord], field_or_fn: str | Callable[[TradeRecord], str]
) -> list[GroupSummary]:
    if isinstance(field_or_fn, str):
        attr = field_or_fn

        def key_fn(t: TradeRecord) -> str:
            value = cast(object, getattr(t, attr, None))
            return "Unknown" if value is None else str(value)
    else:
        key_fn = field_or_fn

    buckets = _bucket(trades, lambda t: (key_fn(t),))
    return _by_total_pnl(_summarize(k, k, v) for k, v in buckets.items())
