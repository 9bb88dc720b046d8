# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_user
from app.core.config import settings
from app.db.models import User
from app.db.session import get_db
from app.services.owner import owner_status_both
from app.services.subscription import resolve_subscription


router = APIRouter(prefix="/subscription", tags=["subscription"])


class SubscriptionResponse(BaseModel):
    tier: str
    is_owner: bool
    is_trial: bool
    trial_end: datetime | None
    granted_by_invite_code: str | None


class OwnerStatusResponse(BaseModel):
    is_owner_by_email: bool
    is_owner_by_db: bool
    is_owner: bool
    owner_email_configured: bool


@router.get("", response_model=SubscriptionResponse, operation_id="subscription_get")
async def subscription_get(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubscriptionResponse:
    view = resolve_subscription(db, user_id=user.id, email=user.email)
    return SubscriptionResponse(
        tier=view.tier,
        is_owner=view.is_owner,
        is_trial=view.is_trial,
        trial_end=view.trial_end,
        granted_by_invite_code=view.granted_by_invite_code,
    )


@router.get(
    "/owner-status",
    response_model=OwnerStatusResponse,
    operation_id="subscription_owner_status",
)
async def subscription_owner_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OwnerStatusResponse:
    status = owner_status_both(db, user_id=user.id, email=user.email)
    return OwnerStatusResponse(
        is_owner_by_email=status.by_email,
        is_owner_by_db=status.by_db,
        is_owner=status.is_owner,
        owner_email_configured=settings.owner_email_normalized is not None,
    )
