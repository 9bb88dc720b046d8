from __future__ import annotations

import argparse
import json
import sys
from typing import cast

from app.core.audit import purge_old_audit_logs
from app.core.clock import utcnow
from app.core.config import settings
from app.db.session import SessionLocal


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Delete audit log rows older than the retention window."
    )
    _ = parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override AUDIT_LOG_RETENTION_DAYS for this run.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    retention_days = cast(int | None, args.retention_days)
    if retention_days is None:
        retention_days = settings.audit_log_retention_days

    db = SessionLocal()
    try:
        result = purge_old_audit_logs(db, now=utcnow(), retention_days=retention_days)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        db.close()

    print(json.dumps(result, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
