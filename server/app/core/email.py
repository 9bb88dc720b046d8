from __future__ import annotations


def normalize_email(raw: str) -> str:
    return raw.strip().lower()


def emails_match(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return normalize_email(a) == normalize_email(b)
