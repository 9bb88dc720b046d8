# pyright: reportMissingImports=false

from __future__ import annotations

from collections.abc import Callable
from typing import cast

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.db.models import Subscription
from app.db.session import SessionLocal
from app.services.subscription import (
    FREE_SUBSCRIPTION,
    ensure_free_subscription,
    resolve_subscription,
    tier_allows,
)
from conftest import me


def _set_row(user_id: str, **fields: object) -> None:
    with SessionLocal() as db:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()
        if sub is None:
            sub = Subscription(user_id=user_id)
            db.add(sub)
        for k, v in fields.items():
            setattr(sub, k, v)
        db.commit()


@pytest.mark.parametrize(
    ("tier", "minimum", "allowed"),
    [
        ("free", "free", True),
        ("free", "pro", False),
        ("pro", "pro", True),
        ("max", "pro", True),
        ("pro", "max", False),
        ("bogus", "pro", False),
    ],
)
def test_tier_allows(tier: str, minimum: str, allowed: bool) -> None:
    assert tier_allows(tier, minimum) is allowed


def test_subscription_requires_session(client: TestClient) -> None:
    assert client.get("/api/v1/subscription").status_code == 401


def test_subscription_defaults_to_free(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    headers = user_headers()
    with SessionLocal() as db:
        for sub in db.execute(select(Subscription)).scalars():
            db.delete(sub)
        db.commit()

    resp = client.get("/api/v1/subscription", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {
        "tier": "free",
        "is_owner": False,
        "is_trial": False,
        "trial_end": None,
        "granted_by_invite_code": None,
    }


def test_subscription_row_returned_verbatim(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    headers = user_headers()
    user_id = cast(str, me(client, headers)["user_id"])
    _set_row(user_id, tier="pro", is_trial=True, granted_by_invite_code="STARGATE-PRO-AAAAAA")

    body = client.get("/api/v1/subscription", headers=headers).json()
    assert body["tier"] == "pro"
    assert body["is_trial"] is True
    assert body["granted_by_invite_code"] == "STARGATE-PRO-AAAAAA"


def test_owner_email_overrides_row(
    client: TestClient, owner_headers: dict[str, str]
) -> None:
    user_id = cast(str, me(client, owner_headers)["user_id"])
    _set_row(user_id, tier="free", is_owner=False)

    body = client.get("/api/v1/subscription", headers=owner_headers).json()
    assert body["tier"] == "max"
    assert body["is_owner"] is True


def test_owner_status_endpoint(
    client: TestClient, owner_headers: dict[str, str], user_headers: Callable[..., dict[str, str]]
) -> None:
    owner = client.get("/api/v1/subscription/owner-status", headers=owner_headers).json()
    assert owner == {
        "is_owner_by_email": True,
        "is_owner_by_db": True,
        "is_owner": True,
        "owner_email_configured": True,
    }

    other = client.get("/api/v1/subscription/owner-status", headers=user_headers()).json()
    assert other["is_owner"] is False
    assert other["owner_email_configured"] is True
    assert settings.owner_email not in str(other)


def test_resolver_db_error_degrades_to_free(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "owner_email", None)

    def broken(*_args: object, **_kwargs: object) -> object:
        raise OperationalError("SELECT", {}, Exception("db down"))

    with SessionLocal() as db:
        monkeypatch.setattr(db, "execute", broken)
        assert resolve_subscription(db, user_id="u1", email="a@example.com") == FREE_SUBSCRIPTION


def test_ensure_free_subscription_inserts_once(
    client: TestClient, user_headers: Callable[..., dict[str, str]]
) -> None:
    user_id = cast(str, me(client, user_headers())["user_id"])
    with SessionLocal() as db:
        # Registration already created the row.
        assert ensure_free_subscription(db, user_id=user_id) is False
        rows = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalars().all()
        assert len(rows) == 1
