from __future__ import annotations

from datetime import date, datetime

import pytest

from app.services.trade_stats import (
    PROFIT_FACTOR_CAP,
    TradeRecord,
    build_equity_curve,
    calculate_daily_pnl,
    calculate_stats,
    calculate_trade_pnl,
    decode_tags,
    encode_tags,
    group_trades_by_day,
    group_trades_by_field,
    group_trades_by_symbol,
    group_trades_by_tag,
)


def _trade(
    tid: str,
    *,
    symbol: str = "BTC",
    position: str = "long",
    entry: float = 100.0,
    exit: float | None = 110.0,
    qty: float = 1.0,
    fees: float = 0.0,
    opened: datetime = datetime(2026, 1, 5, 9, 0),
    closed: datetime | None = datetime(2026, 1, 5, 15, 0),
    tags: tuple[str, ...] = (),
    pnl: float | None = None,
    emotion: str | None = None,
) -> TradeRecord:
    return TradeRecord(
        id=tid,
        symbol=symbol,
        position=position,
        entry_price=entry,
        quantity=qty,
        open_timestamp=opened,
        exit_price=exit,
        close_timestamp=closed,
        fees=fees,
        pnl=pnl,
        tags=tags,
        emotion=emotion,
    )


def test_trade_pnl_long_short_and_open() -> None:
    assert calculate_trade_pnl(_trade("a", entry=100, exit=110, qty=2, fees=1)) == 19
    assert calculate_trade_pnl(_trade("b", position="short", entry=100, exit=90, qty=2)) == 20
    assert calculate_trade_pnl(_trade("c", position="short", entry=100, exit=110)) == -10
    assert calculate_trade_pnl(_trade("d", exit=None, closed=None)) is None


def test_stats_counts_only_closed_trades() -> None:
    trades = [
        _trade("w1", exit=120),
        _trade("w2", exit=110),
        _trade("l1", exit=85),
        _trade("be", exit=100),
        _trade("open", exit=105, closed=None),
    ]
    s = calculate_stats(trades)
    assert (s.total_trades, s.wins, s.losses, s.breakeven) == (4, 2, 1, 1)
    assert s.win_rate == pytest.approx(50.0)
    assert s.closed_pnl == pytest.approx(15.0)
    assert s.avg_trade_pnl == pytest.approx(3.75)
    assert s.profit_factor == pytest.approx(2.0)
    assert s.unrealized_pnl == pytest.approx(5.0)


def test_profit_factor_edges() -> None:
    assert calculate_stats([]).profit_factor == 0.0
    assert calculate_stats([_trade("w", exit=150)]).profit_factor == PROFIT_FACTOR_CAP
    huge = [_trade("w", exit=1_000_000), _trade("l", exit=99.99)]
    assert calculate_stats(huge).profit_factor == PROFIT_FACTOR_CAP


def test_explicit_pnl_overrides_prices() -> None:
    s = calculate_stats([_trade("x", exit=110, pnl=-3.0)])
    assert s.closed_pnl == -3.0
    assert s.losses == 1


def test_daily_pnl_and_equity_curve() -> None:
    trades = [
        _trade("a", exit=110, closed=datetime(2026, 1, 6, 10)),
        _trade("b", exit=95, closed=datetime(2026, 1, 5, 10)),
        _trade("c", exit=104, closed=datetime(2026, 1, 6, 12)),
        _trade("open", closed=None),
    ]
    daily = calculate_daily_pnl(trades)
    assert [(d.date, d.pnl, d.trade_count) for d in daily] == [
        (date(2026, 1, 5), -5.0, 1),
        (date(2026, 1, 6), 14.0, 2),
    ]
    curve = build_equity_curve(daily)
    assert [(p.date, p.equity) for p in curve] == [
        (date(2026, 1, 5), -5.0),
        (date(2026, 1, 6), 9.0),
    ]


def test_group_by_symbol_sorted_by_total_pnl() -> None:
    trades = [
        _trade("a", symbol="ETH", exit=90),
        _trade("b", symbol="BTC", exit=130),
        _trade("c", symbol="BTC", exit=95),
    ]
    groups = group_trades_by_symbol(trades)
    assert [g.key for g in groups] == ["BTC", "ETH"]
    btc = groups[0]
    assert btc.trade_count == 2
    assert btc.total_pnl == pytest.approx(25.0)
    assert btc.win_rate == pytest.approx(50.0)
    assert btc.avg_pnl == pytest.approx(12.5)
    assert btc.trade_ids == ["b", "c"]


def test_group_by_tag_multi_and_untagged() -> None:
    trades = [
        _trade("a", exit=120, tags=("breakout", "momentum")),
        _trade("b", exit=90, tags=("breakout",)),
        _trade("c", exit=101),
    ]
    groups = {g.key: g for g in group_trades_by_tag(trades)}
    assert set(groups) == {"breakout", "momentum", "untagged"}
    assert groups["breakout"].trade_count == 2
    assert groups["breakout"].total_pnl == pytest.approx(10.0)
    assert groups["momentum"].trade_ids == ["a"]
    assert groups["untagged"].trade_ids == ["c"]


def test_group_by_day_newest_first_with_label() -> None:
    trades = [
        _trade("a", opened=datetime(2026, 1, 5, 9)),
        _trade("b", opened=datetime(2026, 1, 12, 9)),
    ]
    groups = group_trades_by_day(trades)
    assert [g.key for g in groups] == ["2026-01-12", "2026-01-05"]
    assert groups[1].label == "Mon, Jan 5"


def test_group_by_field_name_and_callable() -> None:
    trades = [
        _trade("a", position="long", emotion="calm"),
        _trade("b", position="short", exit=90, emotion=None),
    ]
    by_emotion = {g.key for g in group_trades_by_field(trades, "emotion")}
    assert by_emotion == {"calm", "Unknown"}

    by_size = group_trades_by_field(trades, lambda t: "big" if t.quantity >= 1 else "small")
    assert [g.key for g in by_size] == ["big"]
    assert by_size[0].trade_count == 2


def test_tags_encoding_dedupes_and_tolerates_garbage() -> None:
    assert encode_tags([" a", "b", "a", ""]) == '["a", "b"]'
    assert decode_tags('["a", "b"]') == ("a", "b")
    assert decode_tags("not json") == ()
    assert decode_tags('{"a": 1}') == ()
    assert decode_tags(None) == ()
