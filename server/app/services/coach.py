from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import cast
from urllib.parse import urlparse

import httpx

from app.core.config import Settings
from app.metrics.prometheus import record_coach_request
from app.services.trade_stats import TradeRecord, calculate_stats, realized_pnl


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are Stargate AI, a trading psychology coach and pattern analyst built into a trading journal.

Your role:
- Analyze trading data to find behavioral patterns, emotional tendencies and process breakdowns
- Frame everything through a psychology and process lens, not just P&L
- Be direct, specific and actionable
- Reference specific trades by symbol and date when making points
- Flag revenge trading, FOMO or ignored stops clearly but constructively

Format rules:
- Use markdown
- Keep responses focused (200-400 words)
- Use bullet points for actionable items"""

TRADE_SUMMARY_PROMPT = """You are Stargate AI, a trading psychology coach analyzing a single trade.

Provide a concise analysis covering:
1. **What was done well**: process, discipline, execution
2. **What could improve**: missed signals, emotional triggers, timing
3. **Emotional pattern**: how the trader's emotion affected the outcome
4. **Action item**: one specific thing to do differently next time

Be direct and specific. Reference the actual trade data. Keep under 200 words. Use markdown."""

RECENT_TRADES_IN_CONTEXT = 20
TRADE_SUMMARY_MAX_TOKENS = 512
_MIN_TIMEOUT_SECONDS = 1.0


class CoachUnavailableError(RuntimeError):
    """The LLM provider failed or answered with something unusable."""


def build_trade_context(trades: Sequence[TradeRecord]) -> str:
    if not trades:
        return "No trade data available yet. The user is asking a general trading question."

    stats = calculate_stats(trades)
    open_count = sum(1 for t in trades if not t.is_closed)

    emotions: dict[str, tuple[int, float]] = {}
    for t in trades:
        if not t.is_closed:
            continue
        label = t.emotion or "Untagged"
        count, pnl = emotions.get(label, (0, 0.0))
        emotions[label] = (count + 1, pnl + realized_pnl(t))

    lines = [
        "## Trading Summary",
        f"- **Total closed trades**: {stats.total_trades}",
        f"- **Open positions**: {open_count}",
        f"- **Total P&L**: ${stats.closed_pnl:.2f}",
        f"- **Win rate**: {stats.win_rate:.1f}%",
        f"- **Wins**: {stats.wins} | **Losses**: {stats.losses}",
        f"- **Profit factor**: {stats.profit_factor:.2f}",
        "",
        "## Emotion Breakdown",
    ]
    lines.extend(
        f"- {label}: {count} trades, total P&L ${pnl:.2f}"
        for label, (count, pnl) in sorted(emotions.items())
    )
    lines.extend(["", f"## Recent Trades (last {RECENT_TRADES_IN_CONTEXT})"])

    recent = sorted(trades, key=lambda t: t.open_timestamp, reverse=True)
    for t in recent[:RECENT_TRADES_IN_CONTEXT]:
        when = (t.close_timestamp or t.open_timestamp).date().isoformat()
        pnl = f"${realized_pnl(t):.2f}" if t.is_closed else "OPEN"
        line = (
            f"- {when} | {t.symbol} {t.position} | P&L: {pnl} | Emotion: {t.emotion or '-'}"
            f" | Setup: {t.setup_type or '-'}"
        )
        if t.notes:
            line += f" | Notes: {t.notes[:80]}"
        lines.append(line)

    return "\n".join(lines)


def _money(value: float) -> str:
    return f"${value:.2f}"


def build_single_trade_context(trade: TradeRecord) -> str:
    if trade.is_closed:
        pnl = _money(realized_pnl(trade))
        assert trade.close_timestamp is not None
        hours = (trade.close_timestamp - trade.open_timestamp).total_seconds() / 3600
        duration = f"{hours:.1f}h"
    else:
        pnl = "OPEN"
        duration = "Still open"
    exit_price = _money(trade.exit_price) if trade.exit_price is not None else "OPEN"

    return "\n".join(
        [
            "## Trade Data",
            f"- **Symbol**: {trade.symbol} ({trade.position})",
            f"- **Entry**: {_money(trade.entry_price)} -> **Exit**: {exit_price}",
            f"- **P&L**: {pnl} | **Duration**: {duration}",
            f"- **Quantity**: {trade.quantity:g} | **Fees**: {_money(trade.fees)}",
            f"- **Emotion at entry**: {trade.emotion or 'Not recorded'}",
            f"- **Setup type**: {trade.setup_type or 'Not recorded'}",
            f"- **Notes**: {trade.notes or 'None'}",
            f"- **Tags**: {', '.join(trade.tags) if trade.tags else 'None'}",
        ]
    )


def build_user_prompt(message: str, trades: Sequence[TradeRecord]) -> str:
    return f"Here is my trading data:\n\n{build_trade_context(trades)}\n\nMy question: {message}"


def _normalize_base_url(raw: str) -> str:
    u = raw.strip().rstrip("/")
    p = urlparse(u)
    if not p.scheme or not p.netloc:
        raise ValueError("OPENAI_BASE_URL must be a full URL")
    if not u.endswith("/v1"):
        u = u + "/v1"
    return u + "/"


def _fake_reply(message: str, trades: Sequence[TradeRecord]) -> str:
    stats = calculate_stats(trades)
    return (
        f"**Coach (offline mode)**: you asked \"{message.strip()}\". "
        f"Across {stats.total_trades} closed trades your win rate is {stats.win_rate:.1f}% "
        f"with total P&L ${stats.closed_pnl:.2f}."
    )


def _extract_chat_text(obj: object) -> str:
    if not isinstance(obj, dict):
        raise CoachUnavailableError("unexpected chat completion response shape")
    choices = cast(dict[str, object], obj).get("choices")
    if not isinstance(choices, list) or not choices:
        raise CoachUnavailableError("chat completion response missing choices")
    first = cast(list[object], choices)[0]
    if not isinstance(first, dict):
        raise CoachUnavailableError("chat completion choice invalid")
    msg = cast(dict[str, object], first).get("message")
    if not isinstance(msg, dict):
        raise CoachUnavailableError("chat completion choice missing message")
    content = cast(dict[str, object], msg).get("content")
    if not isinstance(content, str) or content.strip() == "":
        raise CoachUnavailableError("chat completion returned empty content")
    return content


def _fake_trade_summary(trade: TradeRecord) -> str:
    outcome = _money(realized_pnl(trade)) if trade.is_closed else "still open"
    return (
        f"**Coach (offline mode)**: {trade.symbol} {trade.position} is {outcome}. "
        f"Emotion at entry: {trade.emotion or 'not recorded'}."
    )


async def _openai_reply(
    s: Settings,
    prompt: str,
    *,
    system_prompt: str = SYSTEM_PROMPT,
    max_tokens: int | None = None,
) -> str:
    base_url = _normalize_base_url(s.openai_base_url or "")
    timeout_s = max(float(s.coach_timeout_seconds), _MIN_TIMEOUT_SECONDS)
    headers = {"Authorization": f"Bearer {s.openai_api_key}", "Content-Type": "application/json"}
    payload = {
        "model": s.openai_model,
        "max_tokens": int(max_tokens if max_tokens is not None else s.coach_max_tokens),
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
    }

    timeout = httpx.Timeout(timeout_s, connect=min(10.0, timeout_s))
    try:
        async with httpx.AsyncClient(base_url=base_url, timeout=timeout, trust_env=False) as client:
            resp = await client.post("chat/completions", headers=headers, json=payload)
            _ = resp.raise_for_status()
            obj = cast(object, resp.json())
    except (httpx.HTTPError, ValueError) as exc:
        raise CoachUnavailableError(f"chat completion request failed: {type(exc).__name__}") from exc
    return _extract_chat_text(obj)


async def _complete(
    s: Settings,
    *,
    fake: Callable[[], str],
    prompt: Callable[[], str],
    system_prompt: str = SYSTEM_PROMPT,
    max_tokens: int | None = None,
) -> str:
    mode = s.coach_mode.strip().lower()
    start = time.perf_counter()
    error: str | None = None
    try:
        if mode == "fake":
            return fake()
        return await _openai_reply(s, prompt(), system_prompt=system_prompt, max_tokens=max_tokens)
    except CoachUnavailableError as exc:
        error = str(exc)
        raise
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        record_coach_request(mode=mode, latency_ms=latency_ms, error=error)
        if error is not None:
            logger.warning("coach request failed mode=%s latency_ms=%d error=%s", mode, latency_ms, error)


async def ask_coach(s: Settings, *, message: str, trades: Sequence[TradeRecord]) -> str:
    return await _complete(
        s,
        fake=lambda: _fake_reply(message, trades),
        prompt=lambda: build_user_prompt(message, trades),
    )


async def summarize_trade(s: Settings, *, trade: TradeRecord) -> str:
    """Short coaching write-up for one trade."""
    return await _complete(
        s,
        fake=lambda: _fake_trade_summary(trade),
        prompt=lambda: f"Analyze this trade:\n\n{build_single_trade_context(trade)}",
        system_prompt=TRADE_SUMMARY_PROMPT,
        max_tokens=TRADE_SUMMARY_MAX_TOKENS,
    )
