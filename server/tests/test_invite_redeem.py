# pyright: reportMissingImports=false
# pyright: reportUnknownMemberType=false

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import cast

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import delete, func, select

from app.core.clock import utcnow
from app.core.config import settings
from app.core.security import hash_password
from app.db.models import InviteCode, InviteRedemption, Subscription, User
from app.db.session import SessionLocal
from app.services import redemption as redemption_service
from app.services.redemption import redeem_invite_code, upsert_subscription_tier
from conftest import me, random_email


REDEEM = "/api/v1/invite/redeem"


def _invite(code: str, tier: str = "max", **fields: object) -> str:
    with SessionLocal() as db:
        row = InviteCode(code=code, grants_tier=tier, **fields)
        db.add(row)
        db.commit()
        return row.id


def _redeem(client: TestClient, headers: dict[str, str], code: object) -> dict[str, object]:
    resp = client.post(REDEEM, headers=headers, json={"code": code})
    assert resp.status_code == 200, resp.text
    return cast(dict[str, object], resp.json())


def _subscription(user_id: str) -> Subscription | None:
    with SessionLocal() as db:
        return db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()


def _current_uses(invite_id: str) -> int:
    with SessionLocal() as db:
        row = db.get(InviteCode, invite_id)
        assert row is not None
        return row.current_uses


def _redemption_count(invite_id: str) -> int:
    with SessionLocal() as db:
        return int(
            db.execute(
                select(func.count())
                .select_from(InviteRedemption)
                .where(InviteRedemption.invite_code_id == invite_id)
            ).scalar_one()
        )


def _outcome_count(outcome: str) -> float:
    value = REGISTRY.get_sample_value("stargate_invite_redemptions_total", {"outcome": outcome})
    return value or 0.0


def test_redeem_requires_session(client: TestClient) -> None:
    resp = client.post(REDEEM, json={"code": "STARGATE-MAX-AB12CD"})
    assert resp.status_code == 401


def test_redeem_success_grants_tier_and_records_use(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    invite_id = _invite("STARGATE-MAX-AB12CD")
    headers = user_headers()
    user_id = cast(str, me(client, headers)["user_id"])
    before = _outcome_count("success")

    body = _redeem(client, headers, "  stargate-max-ab12cd ")
    assert body == {"success": True, "tier": "max"}

    sub = _subscription(user_id)
    assert sub is not None
    assert sub.tier == "max"
    assert sub.granted_by_invite_code == "STARGATE-MAX-AB12CD"
    assert _current_uses(invite_id) == 1
    assert _redemption_count(invite_id) == 1
    assert _outcome_count("success") == before + 1

    sub_resp = client.get("/api/v1/subscription", headers=headers).json()
    assert sub_resp["tier"] == "max"


def test_same_user_cannot_redeem_twice(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    invite_id = _invite("STARGATE-MAX-AB12CD")
    headers = user_headers()

    assert _redeem(client, headers, "STARGATE-MAX-AB12CD")["success"] is True
    again = _redeem(client, headers, "STARGATE-MAX-AB12CD")
    assert again == {
        "success": False,
        "error": "You already redeemed this code",
        "reason": "already_redeemed",
    }
    assert _current_uses(invite_id) == 1
    assert _redemption_count(invite_id) == 1


def test_unknown_code(client: TestClient, user_headers: Callable[..., dict[str, str]]) -> None:
    body = _redeem(client, user_headers(), "STARGATE-MAX-ZZZZZZ")
    assert body == {"success": False, "error": "Invalid code", "reason": "invalid_code"}


def test_inactive_code(client: TestClient, user_headers: Callable[..., dict[str, str]]) -> None:
    invite_id = _invite("STARGATE-PRO-INACT1", "pro", is_active=False)
    body = _redeem(client, user_headers(), "STARGATE-PRO-INACT1")
    assert body["reason"] == "code_inactive"
    assert body["error"] == "Code is no longer active"
    assert _current_uses(invite_id) == 0


def test_inactive_wins_over_expired(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    _ = _invite(
        "STARGATE-PRO-BOTH01",
        "pro",
        is_active=False,
        expires_at=utcnow() - timedelta(days=1),
    )
    assert _redeem(client, user_headers(), "STARGATE-PRO-BOTH01")["reason"] == "code_inactive"


def test_expired_code_leaves_subscription_untouched(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    invite_id = _invite("STARGATE-MAX-OLD001", expires_at=utcnow() - timedelta(minutes=1))
    headers = user_headers()
    user_id = cast(str, me(client, headers)["user_id"])

    body = _redeem(client, headers, "STARGATE-MAX-OLD001")
    assert body == {"success": False, "error": "Code has expired", "reason": "code_expired"}

    sub = _subscription(user_id)
    assert sub is not None and sub.tier == "free"
    assert _current_uses(invite_id) == 0
    assert _redemption_count(invite_id) == 0


def test_future_expiry_is_accepted(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    _ = _invite("STARGATE-MAX-NEW001", expires_at=utcnow() + timedelta(days=1))
    assert _redeem(client, user_headers(), "STARGATE-MAX-NEW001")["success"] is True


def test_max_uses_is_a_hard_cap(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    invite_id = _invite("STARGATE-PRO-CAP002", "pro", max_uses=2)

    assert _redeem(client, user_headers(), "STARGATE-PRO-CAP002")["success"] is True
    assert _redeem(client, user_headers(), "STARGATE-PRO-CAP002")["success"] is True
    third = _redeem(client, user_headers(), "STARGATE-PRO-CAP002")
    assert third == {
        "success": False,
        "error": "Code has reached maximum uses",
        "reason": "max_uses_reached",
    }
    assert _current_uses(invite_id) == 2
    assert _redemption_count(invite_id) == 2


def test_second_code_changes_tier(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    _ = _invite("STARGATE-MAX-FIRST1")
    _ = _invite("STARGATE-PRO-SECND2", "pro")
    headers = user_headers()
    user_id = cast(str, me(client, headers)["user_id"])

    assert _redeem(client, headers, "STARGATE-MAX-FIRST1")["tier"] == "max"
    assert _redeem(client, headers, "STARGATE-PRO-SECND2")["tier"] == "pro"

    sub = _subscription(user_id)
    assert sub is not None
    assert sub.tier == "pro"
    assert sub.granted_by_invite_code == "STARGATE-PRO-SECND2"
    with SessionLocal() as db:
        rows = db.execute(select(Subscription).where(Subscription.user_id == user_id)).all()
        assert len(rows) == 1


def test_redeem_keeps_owner_and_trial_flags(
    client: TestClient, owner_headers: dict[str, str]
) -> None:
    _ = _invite("STARGATE-PRO-OWNER1", "pro")
    user_id = cast(str, me(client, owner_headers)["user_id"])

    assert _redeem(client, owner_headers, "STARGATE-PRO-OWNER1")["success"] is True

    sub = _subscription(user_id)
    assert sub is not None
    assert sub.is_owner is True
    assert sub.tier == "pro"
    # The resolver still reports the owner as max.
    assert client.get("/api/v1/subscription", headers=owner_headers).json()["tier"] == "max"


@pytest.mark.parametrize("payload", [{}, {"code": ""}, {"code": "   "}, {"code": 42}, [1, 2]])
def test_missing_code_is_400(
    client: TestClient, user_headers: Callable[..., dict[str, str]], payload: object
) -> None:
    resp = client.post(REDEEM, headers=user_headers(), json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Code is required"}


def test_unparsable_body_is_400(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    headers = {**user_headers(), "Content-Type": "application/json"}
    resp = client.post(REDEEM, headers=headers, content=b"{not json")
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Invalid request"}


def test_rate_limit_after_five_attempts(
    client: TestClient, user_headers: Callable[..., dict[str, str]], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "invite_redeem_rate_limit_enabled", True)
    monkeypatch.setattr(settings, "invite_redeem_rate_limit_max_attempts", 5)
    monkeypatch.setattr(settings, "invite_redeem_rate_limit_window_seconds", 60)
    headers = user_headers()

    for _ in range(5):
        assert _redeem(client, headers, "STARGATE-MAX-NOPE00")["reason"] == "invalid_code"

    blocked = client.post(REDEEM, headers=headers, json={"code": "STARGATE-MAX-NOPE00"})
    assert blocked.status_code == 429
    assert blocked.json() == {"success": False, "error": "Too many attempts. Please wait."}
    retry_after = int(blocked.headers["Retry-After"])
    assert 1 <= retry_after <= 60

    # The window is per user.
    other = client.post(REDEEM, headers=user_headers(), json={"code": "STARGATE-MAX-NOPE00"})
    assert other.status_code == 200


def test_concurrent_duplicate_is_caught_by_unique_constraint(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    invite_id = _invite("STARGATE-MAX-RACE01")
    with SessionLocal() as db:
        user = User(email=random_email(), password_hash=hash_password("password123"))
        db.add(user)
        db.commit()
        user_id = user.id
        db.add(InviteRedemption(invite_code_id=invite_id, user_id=user_id))
        db.commit()

    real = redemption_service._already_redeemed
    calls = {"n": 0}

    def stale_first_check(db: object, *, invite_id: str, user_id: str) -> bool:
        calls["n"] += 1
        if calls["n"] == 1:
            # Simulates losing the race: the pre-check saw no row.
            return False
        return real(db, invite_id=invite_id, user_id=user_id)  # type: ignore[arg-type]

    monkeypatch.setattr(redemption_service, "_already_redeemed", stale_first_check)

    with SessionLocal() as db:
        result = redeem_invite_code(db, code="STARGATE-MAX-RACE01", user_id=user_id)
    assert result.success is False
    assert result.reason == "already_redeemed"
    assert _current_uses(invite_id) == 0
    assert _subscription(user_id) is None


def test_redeem_creates_subscription_when_missing(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    _ = _invite("STARGATE-PRO-NOROW1", "pro")
    headers = user_headers()
    user_id = cast(str, me(client, headers)["user_id"])
    with SessionLocal() as db:
        _ = db.execute(delete(Subscription).where(Subscription.user_id == user_id))
        db.commit()

    assert _redeem(client, headers, "STARGATE-PRO-NOROW1") == {"success": True, "tier": "pro"}
    sub = _subscription(user_id)
    assert sub is not None
    assert (sub.tier, sub.is_owner, sub.is_trial) == ("pro", False, False)


def test_subscription_write_resolves_conflict_in_the_database() -> None:
    with SessionLocal() as db:
        user = User(email=random_email(), password_hash=hash_password("password123"))
        db.add(user)
        db.commit()
        user_id = user.id

    now = utcnow()
    with SessionLocal() as db:
        # The second write lands on a row this transaction never read.
        upsert_subscription_tier(
            db, user_id=user_id, tier="pro", code="STARGATE-PRO-AAAAAA", now=now
        )
        upsert_subscription_tier(
            db, user_id=user_id, tier="max", code="STARGATE-MAX-BBBBBB", now=now
        )
        db.commit()

    with SessionLocal() as db:
        rows = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].tier == "max"
        assert rows[0].granted_by_invite_code == "STARGATE-MAX-BBBBBB"
        assert rows[0].is_owner is False
