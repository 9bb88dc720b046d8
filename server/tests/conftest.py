# pyright: reportUnusedFunction=false
# pyright: reportMissingImports=false
from __future__ import annotations

import os
import sys
import tempfile
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import cast

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Must happen before anything imports app.core.config.
if not os.environ.get("DATABASE_URL"):
    _tmp_dir = tempfile.mkdtemp(prefix="stargate-tests-")
    os.environ["DATABASE_URL"] = f"sqlite:///{_tmp_dir}/test.db"
os.environ.setdefault("COACH_MODE", "fake")

from fastapi.testclient import TestClient  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import engine  # noqa: E402
from app.main import app  # noqa: E402


Base.metadata.create_all(bind=engine)


PASSWORD = "password123"

TokenPair = dict[str, object]


@pytest.fixture(autouse=True)
def _isolate_db() -> None:
    tables = list(Base.metadata.sorted_tables)
    with engine.begin() as conn:
        for t in reversed(tables):
            _ = conn.execute(t.delete())


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def owner_email(monkeypatch: pytest.MonkeyPatch) -> str:
    email = f"owner-{uuid.uuid4().hex[:8]}@example.com"
    monkeypatch.setattr(settings, "owner_email", email)
    return email


def random_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex}@example.com"


def register(client: TestClient, email: str | None = None, password: str = PASSWORD) -> TokenPair:
    resp = client.post(
        "/api/v1/auth/register",
        json={"email": email or random_email(), "password": password},
    )
    assert resp.status_code == 201, resp.text
    return cast(TokenPair, resp.json())


def bearer(tokens: TokenPair) -> dict[str, str]:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def me(client: TestClient, headers: dict[str, str]) -> dict[str, object]:
    resp = client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 200, resp.text
    return cast(dict[str, object], resp.json())


@pytest.fixture()
def user_headers(client: TestClient) -> Callable[..., dict[str, str]]:
    def make(email: str | None = None) -> dict[str, str]:
        return bearer(register(client, email=email))

    return make


@pytest.fixture()
def owner_headers(client: TestClient, owner_email: str) -> dict[str, str]:
    return bearer(register(client, email=owner_email))
