# pyright: reportMissingImports=false

from __future__ import annotations

from typing import cast

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.config import settings
from app.db.models import RateLimit, RefreshToken, Subscription, User
from app.db.session import SessionLocal
from conftest import PASSWORD, bearer, me, random_email, register


def test_me_unauthenticated_returns_401(client: TestClient) -> None:
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 401, resp.text


def test_me_rejects_garbage_token(client: TestClient) -> None:
    resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_register_returns_tokens_and_me_works(client: TestClient) -> None:
    email = random_email()
    tokens = register(client, email=email)
    assert tokens["token_type"] == "bearer"
    assert tokens["is_owner"] is False

    body = me(client, bearer(tokens))
    assert body["email"] == email
    assert body["email_confirmed"] is False


def test_register_normalizes_email_and_rejects_duplicate(client: TestClient) -> None:
    email = random_email()
    _ = register(client, email=email.upper())

    dup = client.post("/api/v1/auth/register", json={"email": email, "password": PASSWORD})
    assert dup.status_code == 409


def test_register_weak_password_rejected(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": random_email(), "password": "onlyletters"},
    )
    assert resp.status_code == 400


def test_register_creates_free_subscription(client: TestClient) -> None:
    tokens = register(client)
    user_id = cast(str, me(client, bearer(tokens))["user_id"])

    with SessionLocal() as db:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one()
        assert sub.tier == "free"
        assert sub.is_owner is False


def test_login_and_refresh_rotation(client: TestClient) -> None:
    email = random_email()
    _ = register(client, email=email)

    login = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert login.status_code == 200, login.text
    first = cast(dict[str, object], login.json())

    r1 = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert r1.status_code == 200, r1.text
    second = cast(dict[str, object], r1.json())
    assert second["refresh_token"] != first["refresh_token"]

    reused = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
    assert reused.status_code == 401


def test_login_bad_credentials(client: TestClient) -> None:
    email = random_email()
    _ = register(client, email=email)

    resp = client.post("/api/v1/auth/login", json={"email": email, "password": "wrong1234"})
    assert resp.status_code == 401


def test_logout_revokes_refresh_tokens(client: TestClient) -> None:
    tokens = register(client)
    headers = bearer(tokens)

    resp = client.post("/api/v1/auth/logout", headers=headers)
    assert resp.status_code == 204

    with SessionLocal() as db:
        rows = db.execute(select(RefreshToken)).scalars().all()
        assert rows
        assert all(r.revoked_at is not None for r in rows)

    again = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert again.status_code == 401


def test_login_rate_limited_after_repeated_failures(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "auth_rate_limit_enabled", True)
    monkeypatch.setattr(settings, "auth_rate_limit_max_failures", 2)
    monkeypatch.setattr(settings, "auth_rate_limit_window_seconds", 300)

    email = random_email()
    _ = register(client, email=email)

    for _ in range(2):
        bad = client.post("/api/v1/auth/login", json={"email": email, "password": "wrong1234"})
        assert bad.status_code == 401

    blocked = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) >= 1

    with SessionLocal() as db:
        assert db.execute(select(RateLimit)).scalars().first() is not None


def test_owner_login_is_flagged_and_provisioned(client: TestClient, owner_email: str) -> None:
    tokens = register(client, email=owner_email.upper())
    assert tokens["is_owner"] is True

    login = client.post("/api/v1/auth/login", json={"email": owner_email, "password": PASSWORD})
    assert login.status_code == 200
    assert login.json()["is_owner"] is True

    with SessionLocal() as db:
        user = db.execute(select(User).where(User.email == owner_email)).scalar_one()
        subs = db.execute(
            select(Subscription).where(Subscription.user_id == user.id)
        ).scalars().all()
        assert len(subs) == 1
        assert subs[0].tier == "max"
        assert subs[0].is_owner is True


def test_signup_finalize(client: TestClient) -> None:
    tokens = register(client)
    headers = bearer(tokens)
    user_id = cast(str, me(client, headers)["user_id"])

    with SessionLocal() as db:
        for sub in db.execute(select(Subscription)).scalars():
            db.delete(sub)
        db.commit()

    resp = client.post("/api/v1/auth/signup/finalize", json={"userId": user_id})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"success": True}
    assert me(client, headers)["email_confirmed"] is True

    with SessionLocal() as db:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one()
        assert sub.tier == "free"


def test_signup_finalize_never_overwrites_existing_tier(client: TestClient) -> None:
    tokens = register(client)
    user_id = cast(str, me(client, bearer(tokens))["user_id"])
    with SessionLocal() as db:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one()
        sub.tier = "pro"
        db.commit()

    resp = client.post("/api/v1/auth/signup/finalize", json={"userId": user_id})
    assert resp.status_code == 200

    with SessionLocal() as db:
        sub = db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one()
        assert sub.tier == "pro"


def test_signup_finalize_validation(client: TestClient) -> None:
    missing = client.post("/api/v1/auth/signup/finalize", json={})
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Missing user ID."

    unknown = client.post("/api/v1/auth/signup/finalize", json={"userId": "nope"})
    assert unknown.status_code == 404
