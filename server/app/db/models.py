# pyright: reportMissingImports=false
# pyright: reportImplicitOverride=false
# pyright: reportIncompatibleVariableOverride=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.db.base import Base


TIERS: tuple[str, ...] = ("free", "pro", "max")
INVITE_TIERS: tuple[str, ...] = ("pro", "max")


def _uuid_str() -> str:
    return str(uuid4())


class User(Base):
    __tablename__: str = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        "RefreshToken",
        back_populates="user",
        passive_deletes=True,
    )


class RefreshToken(Base):
    __tablename__: str = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="refresh_tokens")


class Subscription(Base):
    __tablename__: str = "user_subscriptions"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("tier IN ('free','pro','max')", name="ck_user_subscriptions_tier"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        index=True,
        nullable=False,
    )
    tier: Mapped[str] = mapped_column(String(10), nullable=False, default="free")
    is_owner: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    is_trial: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    trial_end: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    granted_by_invite_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


class InviteCode(Base):
    __tablename__: str = "invite_codes"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("grants_tier IN ('pro','max')", name="ck_invite_codes_grants_tier"),
        CheckConstraint("current_uses >= 0", name="ck_invite_codes_current_uses_ge_0"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses",
            name="ck_invite_codes_current_uses_le_max_uses",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    grants_tier: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    max_uses: Mapped[int | None] = mapped_column(Integer(), nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    created_by: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


class InviteRedemption(Base):
    __tablename__: str = "invite_code_redemptions"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint(
            "invite_code_id",
            "user_id",
            name="uq_invite_code_redemptions_code_user",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    invite_code_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("invite_codes.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)


class RateLimit(Base):
    __tablename__: str = "rate_limits"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("attempts >= 0", name="ck_rate_limits_attempts_ge_0"),
    )

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    attempts: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)
    reset_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


class AuditLog(Base):
    __tablename__: str = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)

    actor: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)

    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)

    metadata_json: Mapped[str] = mapped_column(Text(), nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)


class Trade(Base):
    __tablename__: str = "trades"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("position IN ('long','short')", name="ck_trades_position"),
        CheckConstraint("quantity > 0", name="ck_trades_quantity_gt_0"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    symbol: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    position: Mapped[str] = mapped_column(String(5), nullable=False)
    entry_price: Mapped[float] = mapped_column(Float(), nullable=False)
    exit_price: Mapped[float | None] = mapped_column(Float(), nullable=True)
    quantity: Mapped[float] = mapped_column(Float(), nullable=False)
    fees: Mapped[float] = mapped_column(Float(), nullable=False, default=0.0)
    # Explicit P&L overrides the computed one (e.g. imported exchange statements).
    pnl: Mapped[float | None] = mapped_column(Float(), nullable=True)
    open_timestamp: Mapped[datetime] = mapped_column(DateTime(), nullable=False, index=True)
    close_timestamp: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    tags_json: Mapped[str] = mapped_column(Text(), nullable=False, default="[]")
    emotion: Mapped[str | None] = mapped_column(String(50), nullable=True)
    setup_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)


class JournalNote(Base):
    __tablename__: str = "journal_notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    tags_json: Mapped[str] = mapped_column(Text(), nullable=False, default="[]")
    trade_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("trades.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    auto_link_on_import: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )
