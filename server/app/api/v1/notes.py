# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.v1.deps import get_current_user
from app.db.models import JournalNote, User
from app.db.session import get_db
from app.services.journal import get_user_trade
from app.services.note_linking import auto_link_notes
from app.services.trade_stats import decode_tags, encode_tags


router = APIRouter(prefix="/notes", tags=["notes"])


class NoteCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    title: str | None = Field(None, max_length=200)
    tags: list[str] = Field(default_factory=list)
    trade_id: str | None = None
    auto_link_on_import: bool = False


class NoteItem(BaseModel):
    id: str
    title: str | None
    content: str
    tags: list[str]
    trade_id: str | None
    auto_link_on_import: bool
    created_at: datetime


class NoteListResponse(BaseModel):
    items: list[NoteItem] = Field(default_factory=list)
    next_offset: int | None = None


class AutoLinkResponse(BaseModel):
    linked: int


def _item(row: JournalNote) -> NoteItem:
    return NoteItem(
        id=row.id,
        title=row.title,
        content=row.content,
        tags=list(decode_tags(row.tags_json)),
        trade_id=row.trade_id,
        auto_link_on_import=row.auto_link_on_import,
        created_at=row.created_at,
    )


@router.post(
    "",
    response_model=NoteItem,
    status_code=status.HTTP_201_CREATED,
    operation_id="notes_create",
)
async def notes_create(
    payload: NoteCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> NoteItem:
    if payload.trade_id is not None:
        trade = get_user_trade(db, user_id=user.id, trade_id=payload.trade_id)
        if trade is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trade not found")

    row = JournalNote(
        user_id=user.id,
        title=payload.title,
        content=payload.content,
        tags_json=encode_tags(payload.tags),
        trade_id=payload.trade_id,
        auto_link_on_import=payload.auto_link_on_import,
    )
    db.add(row)
    db.commit()
    return _item(row)


@router.get("", response_model=NoteListResponse, operation_id="notes_list")
async def notes_list(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> NoteListResponse:
    rows = list(
        db.execute(
            select(JournalNote)
            .where(JournalNote.user_id == user.id)
            .order_by(JournalNote.created_at.desc(), JournalNote.id.desc())
            .offset(offset)
            .limit(limit + 1)
        )
        .scalars()
        .all()
    )
    more = len(rows) > limit
    page = rows[:limit]
    return NoteListResponse(
        items=[_item(r) for r in page],
        next_offset=(offset + len(page)) if more else None,
    )


@router.post("/auto-link", response_model=AutoLinkResponse, operation_id="notes_auto_link")
async def notes_auto_link(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AutoLinkResponse:
    return AutoLinkResponse(linked=auto_link_notes(db, user_id=user.id))
