from __future__ import annotations

# pyright: reportUnknownMemberType=false
# pyright: reportCallInDefaultInitializer=false

import logging
import time
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.version import get_app_version
from app.db.session import get_db


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class DependencyStatus(BaseModel):
    status: Literal["ok", "error"]
    latency_ms: int | None = None
    detail: str | None = Field(default=None, description="Short diagnostic, never sensitive")


class HealthDependencies(BaseModel):
    db: DependencyStatus


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    version: str
    dependencies: HealthDependencies


def _check_db(db: Session) -> DependencyStatus:
    start = time.perf_counter()
    try:
        _ = db.execute(text("SELECT 1")).scalar_one()
    except SQLAlchemyError as exc:
        db.rollback()
        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.warning("health db check failed error=%s", type(exc).__name__)
        return DependencyStatus(status="error", latency_ms=latency_ms, detail=type(exc).__name__)
    return DependencyStatus(status="ok", latency_ms=int((time.perf_counter() - start) * 1000))


@router.get("/health", response_model=HealthResponse)
def health(db: Session = Depends(get_db)) -> HealthResponse:
    dependencies = HealthDependencies(db=_check_db(db))
    status: Literal["ok", "degraded"] = "ok" if dependencies.db.status == "ok" else "degraded"
    return HealthResponse(status=status, version=get_app_version(), dependencies=dependencies)
