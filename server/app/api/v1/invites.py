# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

import logging
from typing import cast

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_user
from app.core.config import settings
from app.db.models import User
from app.db.session import get_db
from app.metrics.prometheus import record_invite_redeem_throttled, record_invite_redemption
from app.services.rate_limit import RateLimiter, user_action_key
from app.services.redemption import redeem_invite_code


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invite", tags=["invites"])


def _rate_limiter() -> RateLimiter:
    return RateLimiter(
        enabled=settings.invite_redeem_rate_limit_enabled,
        max_attempts=settings.invite_redeem_rate_limit_max_attempts,
        window_seconds=settings.invite_redeem_rate_limit_window_seconds,
    )


def _failure(status_code: int, error: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


@router.post("/redeem", operation_id="invite_redeem")
async def invite_redeem(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> JSONResponse:
    check = _rate_limiter().hit(db, key=user_action_key(action="invite_redeem", user_id=user.id))
    if check.blocked:
        record_invite_redeem_throttled()
        return _failure(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "Too many attempts. Please wait.",
            headers={"Retry-After": str(check.retry_after_seconds)},
        )

    try:
        body = cast(object, await request.json())
    except ValueError:
        return _failure(status.HTTP_400_BAD_REQUEST, "Invalid request")

    raw_code = cast(dict[str, object], body).get("code") if isinstance(body, dict) else None
    if not isinstance(raw_code, str) or raw_code.strip() == "":
        return _failure(status.HTTP_400_BAD_REQUEST, "Code is required")

    result = redeem_invite_code(db, code=raw_code, user_id=user.id)
    record_invite_redemption(outcome="success" if result.success else str(result.reason))

    if not result.success:
        logger.info("invite redemption rejected user_id=%s reason=%s", user.id, result.reason)
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"success": False, "error": result.error, "reason": result.reason},
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"success": True, "tier": result.tier},
    )
