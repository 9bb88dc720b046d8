from __future__ import annotations

import contextvars
import logging
import re
import sys
from typing_extensions import override


request_id_ctx_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    @override
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.request_id = request_id_ctx_var.get()
        return True


_RE_BEARER = re.compile(
    r"(?i)(authorization\s*[:=]\s*bearer\s+)([a-z0-9._~+/=-]+)",
)
_RE_JSON_TOKENS = re.compile(
    r'(?i)("(?:access_token|refresh_token|password|api_key)"\s*:\s*")([^"]+)(")',
)
_RE_KV_TOKENS = re.compile(
    r"(?i)\b(access_token|refresh_token|password|api_key)\b\s*=\s*([^\s,;]+)",
)
_RE_OPENAI_KEY = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")

# Full invite codes are bearer credentials until redeemed; keep the tier part only.
_RE_INVITE_CODE = re.compile(r"\b([A-Z]+-(?:PRO|MAX)-)([A-Z0-9]{4,})\b")
_RE_CODE_JSON = re.compile(r'("code"\s*:\s*")([^"]+)(")', re.IGNORECASE)


def _redact_value(raw: str) -> str:
    return f"[REDACTED len={len(raw)}]"


class RedactingFormatter(logging.Formatter):
    @override
    def format(self, record: logging.LogRecord) -> str:
        out = super().format(record)

        out = _RE_BEARER.sub(r"\1[REDACTED]", out)
        out = _RE_JSON_TOKENS.sub(
            lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out
        )
        out = _RE_KV_TOKENS.sub(lambda m: f"{m.group(1)}={_redact_value(m.group(2))}", out)
        out = _RE_OPENAI_KEY.sub("sk-[REDACTED]", out)
        out = _RE_CODE_JSON.sub(
            lambda m: f"{m.group(1)}{_redact_value(m.group(2))}{m.group(3)}", out
        )
        out = _RE_INVITE_CODE.sub(lambda m: f"{m.group(1)}{'*' * len(m.group(2))}", out)

        return out


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        RedactingFormatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [rid=%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    # Avoid duplicate handlers when app reloads in dev.
    root.handlers = [handler]
