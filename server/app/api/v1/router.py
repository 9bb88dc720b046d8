# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.admin_invites import router as admin_invites_router
from app.api.v1.admin_users import router as admin_users_router
from app.api.v1.auth import router as auth_router
from app.api.v1.coach import router as coach_router
from app.api.v1.health import router as health_router
from app.api.v1.invites import router as invites_router
from app.api.v1.notes import router as notes_router
from app.api.v1.subscription import router as subscription_router
from app.api.v1.trades import router as trades_router


api_router = APIRouter()
api_router.include_router(auth_router)
api_router.include_router(health_router)
api_router.include_router(subscription_router)
api_router.include_router(invites_router)
api_router.include_router(admin_invites_router)
api_router.include_router(admin_users_router)
api_router.include_router(trades_router)
api_router.include_router(notes_router)
api_router.include_router(coach_router)
