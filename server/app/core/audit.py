from __future__ import annotations

import json
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.clock import utcnow
from app.db.models import AuditLog


def canonical_json(obj: dict[str, object]) -> str:
    return json.dumps(obj, ensure_ascii=True, separators=(",", ":"), sort_keys=True, default=str)


def mask_code(code: str) -> str:
    """Keep the ``PREFIX-TIER-`` part of an invite code, hide the random suffix."""
    head, sep, tail = code.rpartition("-")
    if not sep:
        return "*" * len(code)
    return f"{head}-{'*' * len(tail)}"


def add_audit_log(
    db: Session,
    *,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str,
    metadata: dict[str, object],
    now: datetime | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction; the caller commits."""
    row = AuditLog(
        actor=f"owner:{actor_user_id}",
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=canonical_json(metadata),
        created_at=now or utcnow(),
    )
    db.add(row)
    return row


def purge_old_audit_logs(
    db: Session,
    *,
    now: datetime,
    retention_days: int,
) -> dict[str, object]:
    retention_days = int(retention_days)
    if retention_days < 1:
        raise ValueError("retention_days must be >= 1")
    cutoff = now - timedelta(days=retention_days)

    to_delete = db.execute(
        select(func.count()).select_from(AuditLog).where(AuditLog.created_at < cutoff)
    ).scalar_one()
    _ = db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    db.commit()

    return {
        "deleted": int(to_delete),
        "retention_days": retention_days,
        "cutoff": cutoff.isoformat(),
    }
