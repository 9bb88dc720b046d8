from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.db.models import RateLimit


def _safe_key(raw: str) -> str:
    if len(raw) <= 512:
        return raw
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"rl|sha256:{digest}"


def _ip_key(ip: str | None) -> str:
    if not isinstance(ip, str) or ip.strip() == "":
        return "unknown"
    return ip.strip()


def auth_rate_limit_key(*, scope: str, ip: str | None, identifier: str | None = None) -> str:
    ident = ""
    if isinstance(identifier, str) and identifier.strip() != "":
        ident = identifier.strip().lower()
    return _safe_key(f"{scope}|{_ip_key(ip)}|{ident}")


def user_action_key(*, action: str, user_id: str) -> str:
    return _safe_key(f"{action}{user_action_key_suffix(user_id)}")


def user_action_key_suffix(user_id: str) -> str:
    return f"|user|{user_id}"


def purge_expired_rate_limits(db: Session, *, now: datetime) -> int:
    """Drop counters whose window has closed; they carry no state any more."""
    result = db.execute(delete(RateLimit).where(RateLimit.reset_at <= now))
    db.commit()
    return int(result.rowcount or 0)


@dataclass(frozen=True)
class RateLimitCheck:
    blocked: bool
    retry_after_seconds: int


_ALLOWED = RateLimitCheck(blocked=False, retry_after_seconds=0)


class RateLimiter:
    """Fixed-window counter persisted in ``rate_limits``.

    Living in the database means every API instance shares the same window,
    at the cost of one row lock per counted request.
    """

    def __init__(self, *, enabled: bool, max_attempts: int, window_seconds: int):
        self._enabled: bool = bool(enabled)
        self._max_attempts: int = int(max_attempts)
        self._window_seconds: int = int(window_seconds)

    @property
    def active(self) -> bool:
        return self._enabled and self._max_attempts > 0 and self._window_seconds > 0

    def _blocked(self, row: RateLimit) -> RateLimitCheck:
        remaining = (row.reset_at - utcnow()).total_seconds()
        return RateLimitCheck(blocked=True, retry_after_seconds=max(1, math.ceil(remaining)))

    def check(self, db: Session, *, key: str) -> RateLimitCheck:
        if not self.active:
            return _ALLOWED
        row = db.get(RateLimit, key)
        if row is None or row.reset_at <= utcnow():
            return _ALLOWED
        if row.attempts < self._max_attempts:
            return _ALLOWED
        return self._blocked(row)

    def record(self, db: Session, *, key: str) -> None:
        """Count one attempt against ``key`` and commit."""
        if not self.active:
            return

        now = utcnow()
        row = (
            db.execute(select(RateLimit).where(RateLimit.key == key).with_for_update())
            .scalars()
            .one_or_none()
        )
        if row is None:
            db.add(
                RateLimit(
                    key=key,
                    attempts=1,
                    reset_at=now + timedelta(seconds=self._window_seconds),
                )
            )
        elif row.reset_at <= now:
            row.attempts = 1
            row.reset_at = now + timedelta(seconds=self._window_seconds)
        else:
            row.attempts = int(row.attempts) + 1
        db.commit()

    def hit(self, db: Session, *, key: str) -> RateLimitCheck:
        """Check and, when allowed, count the attempt in one step."""
        result = self.check(db, key=key)
        if result.blocked:
            return result
        self.record(db, key=key)
        return _ALLOWED

    def reset(self, db: Session, *, key: str) -> None:
        if not self._enabled:
            return
        row = db.get(RateLimit, key)
        if row is None:
            return
        db.delete(row)
        db.flush()
