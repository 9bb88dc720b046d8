# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
# pyright: reportDeprecated=false

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.v1.deps import require_owner
from app.core.audit import add_audit_log
from app.db.models import Subscription, User
from app.db.session import get_db
from app.services.owner import owner_status
from app.services.subscription import subscription_view
from app.services.user_cascade import delete_user


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin"])


class AdminUserItem(BaseModel):
    id: str
    email: str
    created_at: datetime
    tier: str
    is_owner: bool


class AdminUserListResponse(BaseModel):
    items: list[AdminUserItem] = Field(default_factory=list)
    next_offset: int | None = None


class AdminUserDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(None, alias="userId")


class AdminUserDeleteResponse(BaseModel):
    success: bool = True
    failed_tables: list[str] = Field(default_factory=list)


@router.get(
    "",
    response_model=AdminUserListResponse,
    operation_id="admin_users_list",
)
async def admin_users_list(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> AdminUserListResponse:
    stmt = (
        select(User, Subscription)
        .outerjoin(Subscription, Subscription.user_id == User.id)
        .order_by(User.created_at.desc(), User.id.desc())
        .offset(offset)
        .limit(limit + 1)
    )
    rows = list(db.execute(stmt).all())
    more = len(rows) > limit
    page = rows[:limit]

    items: list[AdminUserItem] = []
    for user, sub in page:
        owner = owner_status(user.email, db_flag=sub is not None and sub.is_owner)
        view = subscription_view(sub, owner_by_email=owner.by_email)
        items.append(
            AdminUserItem(
                id=user.id,
                email=user.email,
                created_at=user.created_at,
                tier=view.tier,
                is_owner=owner.is_owner,
            )
        )
    return AdminUserListResponse(
        items=items,
        next_offset=(offset + len(page)) if more else None,
    )


@router.delete(
    "",
    response_model=AdminUserDeleteResponse,
    operation_id="admin_users_delete",
)
async def admin_users_delete(
    payload: AdminUserDeleteRequest,
    owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> AdminUserDeleteResponse:
    user_id = (payload.user_id or "").strip()
    if user_id == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User ID required")
    if user_id == owner.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account",
        )

    target = db.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    owner_id = owner.id
    _ = add_audit_log(
        db,
        actor_user_id=owner_id,
        action="user.delete",
        target_type="user",
        target_id=user_id,
        metadata={"user_id": user_id},
    )
    report = delete_user(db, user=target)
    if report.failed:
        logger.warning("user deleted with cascade failures user_id=%s failed=%s", user_id, report.failed)
    else:
        logger.info("user deleted user_id=%s deleted=%s", user_id, report.deleted)
    return AdminUserDeleteResponse(failed_tables=report.failed)
