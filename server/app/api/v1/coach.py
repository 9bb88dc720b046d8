# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.v1.deps import require_tier
from app.core.config import settings
from app.db.models import User
from app.db.session import get_db
from app.services.coach import ask_coach, summarize_trade
from app.services.journal import get_user_trade, load_user_trades
from app.services.trade_stats import record_from_row


router = APIRouter(prefix="/ai", tags=["ai"])


class CoachRequest(BaseModel):
    message: str | None = None


class CoachResponse(BaseModel):
    reply: str


@router.post("/coach", response_model=CoachResponse, operation_id="ai_coach")
async def ai_coach(
    payload: CoachRequest,
    user: User = Depends(require_tier("pro")),
    db: Session = Depends(get_db),
) -> CoachResponse:
    message = (payload.message or "").strip()
    if message == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    trades = load_user_trades(db, user.id)
    reply = await ask_coach(settings, message=message, trades=trades)
    return CoachResponse(reply=reply)


class TradeSummaryRequest(BaseModel):
    trade_id: str | None = None


class TradeSummaryResponse(BaseModel):
    summary: str


@router.post(
    "/trade-summary",
    response_model=TradeSummaryResponse,
    operation_id="ai_trade_summary",
)
async def ai_trade_summary(
    payload: TradeSummaryRequest,
    user: User = Depends(require_tier("pro")),
    db: Session = Depends(get_db),
) -> TradeSummaryResponse:
    trade_id = (payload.trade_id or "").strip()
    if trade_id == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Trade ID is required")

    row = get_user_trade(db, user_id=user.id, trade_id=trade_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trade not found")

    summary = await summarize_trade(settings, trade=record_from_row(row))
    return TradeSummaryResponse(summary=summary)
