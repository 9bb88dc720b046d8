from __future__ import annotations

import argparse
import json

from app.core.clock import utcnow
from app.db.session import SessionLocal
from app.services.rate_limit import purge_expired_rate_limits


def _build_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        description="Delete rate limit counters whose window has already closed."
    )


def main(argv: list[str] | None = None) -> int:
    _ = _build_parser().parse_args(argv)

    now = utcnow()
    db = SessionLocal()
    try:
        deleted = purge_expired_rate_limits(db, now=now)
    finally:
        db.close()

    print(json.dumps({"deleted": deleted, "now": now.isoformat()}, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
