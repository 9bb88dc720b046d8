# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
# pyright: reportDeprecated=false
from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.v1.deps import require_owner
from app.core.audit import add_audit_log, mask_code
from app.core.clock import to_naive_utc, utcnow
from app.core.config import settings
from app.db.models import InviteCode, InviteRedemption, User
from app.db.session import get_db


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/invites", tags=["admin"])

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_SUFFIX_LEN = 6
_CREATE_ATTEMPTS = 5


def invite_tier(raw: str | None) -> str:
    return "pro" if (raw or "").strip().lower() == "pro" else "max"


def _new_invite_code(tier: str) -> str:
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_SUFFIX_LEN))
    return f"{settings.invite_code_prefix.upper()}-{tier.upper()}-{suffix}"


class InviteCodeCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str | None = None
    description: str | None = Field(None, max_length=500)
    max_uses: int | None = Field(None, alias="maxUses", ge=1, le=1_000_000)
    expires_at: datetime | None = Field(None, alias="expiresAt")


class InviteCodeIdRequest(BaseModel):
    id: str | None = None


class InviteCodeItem(BaseModel):
    id: str
    code: str
    grants_tier: str
    description: str | None
    is_active: bool
    expires_at: datetime | None
    max_uses: int | None
    current_uses: int
    created_by: str | None
    created_at: datetime


class InviteCodeCreateResponse(BaseModel):
    success: bool = True
    code: InviteCodeItem


class InviteCodeListResponse(BaseModel):
    items: list[InviteCodeItem] = Field(default_factory=list)
    next_offset: int | None = None


class InviteRedemptionItem(BaseModel):
    id: str
    invite_code_id: str
    user_id: str
    created_at: datetime


class InviteRedemptionListResponse(BaseModel):
    items: list[InviteRedemptionItem] = Field(default_factory=list)
    next_offset: int | None = None


class SuccessResponse(BaseModel):
    success: bool = True


def _item(row: InviteCode) -> InviteCodeItem:
    return InviteCodeItem(
        id=row.id,
        code=row.code,
        grants_tier=row.grants_tier,
        description=row.description,
        is_active=row.is_active,
        expires_at=row.expires_at,
        max_uses=row.max_uses,
        current_uses=row.current_uses,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _require_code(db: Session, raw_id: str | None) -> InviteCode:
    code_id = (raw_id or "").strip()
    if code_id == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Code ID required")
    row = db.get(InviteCode, code_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found")
    return row


@router.post(
    "",
    response_model=InviteCodeCreateResponse,
    operation_id="admin_invites_create",
)
async def admin_invites_create(
    payload: InviteCodeCreateRequest,
    owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> InviteCodeCreateResponse:
    now = utcnow()
    tier = invite_tier(payload.tier)
    expires_at = to_naive_utc(payload.expires_at) if payload.expires_at is not None else None

    for _ in range(_CREATE_ATTEMPTS):
        row = InviteCode(
            code=_new_invite_code(tier),
            grants_tier=tier,
            description=payload.description,
            is_active=True,
            expires_at=expires_at,
            max_uses=payload.max_uses,
            current_uses=0,
            created_by=owner.id,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            continue

        _ = add_audit_log(
            db,
            actor_user_id=owner.id,
            action="invite_code.create",
            target_type="invite_code",
            target_id=row.id,
            metadata={
                "code": mask_code(row.code),
                "grants_tier": tier,
                "max_uses": payload.max_uses,
                "expires_at": expires_at.isoformat() if expires_at is not None else None,
            },
            now=now,
        )
        db.commit()
        logger.info("invite code created invite_id=%s tier=%s", row.id, tier)
        return InviteCodeCreateResponse(code=_item(row))

    logger.error("invite code generation exhausted %d attempts", _CREATE_ATTEMPTS)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to generate unique invite code",
    )


@router.get(
    "",
    response_model=InviteCodeListResponse,
    operation_id="admin_invites_list",
)
async def admin_invites_list(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> InviteCodeListResponse:
    stmt = (
        select(InviteCode)
        .order_by(InviteCode.created_at.desc(), InviteCode.id.desc())
        .offset(offset)
        .limit(limit + 1)
    )
    rows = list(db.execute(stmt).scalars().all())
    more = len(rows) > limit
    page = rows[:limit]
    return InviteCodeListResponse(
        items=[_item(r) for r in page],
        next_offset=(offset + len(page)) if more else None,
    )


@router.get(
    "/{invite_id}/redemptions",
    response_model=InviteRedemptionListResponse,
    operation_id="admin_invites_redemptions_list",
)
async def admin_invites_redemptions_list(
    invite_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> InviteRedemptionListResponse:
    if db.get(InviteCode, invite_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invite not found")

    stmt = (
        select(InviteRedemption)
        .where(InviteRedemption.invite_code_id == invite_id)
        .order_by(InviteRedemption.created_at.asc(), InviteRedemption.id.asc())
        .offset(offset)
        .limit(limit + 1)
    )
    rows = list(db.execute(stmt).scalars().all())
    more = len(rows) > limit
    page = rows[:limit]
    return InviteRedemptionListResponse(
        items=[
            InviteRedemptionItem(
                id=r.id,
                invite_code_id=r.invite_code_id,
                user_id=r.user_id,
                created_at=r.created_at,
            )
            for r in page
        ],
        next_offset=(offset + len(page)) if more else None,
    )


@router.patch(
    "",
    response_model=SuccessResponse,
    operation_id="admin_invites_deactivate",
)
async def admin_invites_deactivate(
    payload: InviteCodeIdRequest,
    owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    row = _require_code(db, payload.id)
    now = utcnow()
    if row.is_active:
        row.is_active = False
        row.updated_at = now
        _ = add_audit_log(
            db,
            actor_user_id=owner.id,
            action="invite_code.deactivate",
            target_type="invite_code",
            target_id=row.id,
            metadata={"code": mask_code(row.code)},
            now=now,
        )
    db.commit()
    return SuccessResponse()


@router.delete(
    "",
    response_model=SuccessResponse,
    operation_id="admin_invites_delete",
)
async def admin_invites_delete(
    payload: InviteCodeIdRequest,
    owner: User = Depends(require_owner),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    row = _require_code(db, payload.id)
    invite_id = row.id
    masked = mask_code(row.code)

    result = db.execute(
        delete(InviteRedemption).where(InviteRedemption.invite_code_id == invite_id)
    )
    _ = db.execute(delete(InviteCode).where(InviteCode.id == invite_id))
    _ = add_audit_log(
        db,
        actor_user_id=owner.id,
        action="invite_code.delete",
        target_type="invite_code",
        target_id=invite_id,
        metadata={"code": masked, "redemptions_deleted": int(result.rowcount or 0)},
    )
    db.commit()
    logger.info("invite code deleted invite_id=%s", invite_id)
    return SuccessResponse()
