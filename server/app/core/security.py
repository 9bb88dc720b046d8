from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import TypeAlias, cast


_PBKDF2_ALG = "pbkdf2_sha256"
_PBKDF2_ITERATIONS = 200_000
_PBKDF2_SALT_BYTES = 16

_ACCESS_TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class TokenError(ValueError):
    """Raised for any malformed, forged or expired access token."""


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    if data == "":
        raise ValueError("invalid base64 input")
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("invalid base64 input") from exc


def _pbkdf2(password: str, salt: bytes, iterations: int, dklen: int = 32) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations, dklen=dklen)


def hash_password(password: str) -> str:
    if password == "":
        raise ValueError("password must be a non-empty string")
    salt = secrets.token_bytes(_PBKDF2_SALT_BYTES)
    dk = _pbkdf2(password, salt, _PBKDF2_ITERATIONS)
    return f"{_PBKDF2_ALG}${_PBKDF2_ITERATIONS}${_b64url_encode(salt)}${_b64url_encode(dk)}"


def verify_password(password: str, stored: str) -> bool:
    try:
        alg, iterations_s, salt_s, hash_s = stored.split("$", 3)
        iterations = int(iterations_s)
        salt = _b64url_decode(salt_s)
        expected = _b64url_decode(hash_s)
    except ValueError:
        return False
    if alg != _PBKDF2_ALG or iterations <= 0:
        return False
    return hmac.compare_digest(_pbkdf2(password, salt, iterations, len(expected)), expected)


def validate_password_policy(password: str) -> None:
    if password == "":
        raise ValueError("password must be non-empty")
    if any(ch.isspace() for ch in password):
        raise ValueError("password must not contain whitespace")
    if not (any(ch.isalpha() for ch in password) and any(ch.isdigit() for ch in password)):
        raise ValueError("password must contain letters and numbers")


def new_refresh_token() -> str:
    return _b64url_encode(secrets.token_bytes(32))


def hash_refresh_token(token: str) -> str:
    if token == "":
        raise ValueError("token must be a non-empty string")
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _sign(signing_input: bytes, secret: str) -> bytes:
    if secret == "":
        raise ValueError("secret must be a non-empty string")
    return hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()


def _segment(obj: dict[str, JSONValue]) -> str:
    raw = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=True)
    return _b64url_encode(raw.encode("utf-8"))


def _load_segment(segment: str) -> dict[str, JSONValue]:
    try:
        obj = cast(object, json.loads(_b64url_decode(segment).decode("utf-8")))
    except ValueError as exc:
        raise TokenError("invalid token") from exc
    if not isinstance(obj, dict):
        raise TokenError("invalid token")
    return cast(dict[str, JSONValue], obj)


def encode_access_token(subject: str, *, secret: str, expires_in_seconds: int) -> str:
    if subject == "":
        raise ValueError("subject must be a non-empty string")
    if expires_in_seconds <= 0:
        raise ValueError("expires_in_seconds must be a positive int")

    now = int(time.time())
    claims: dict[str, JSONValue] = {
        "sub": subject,
        "typ": "access",
        "iat": now,
        "exp": now + expires_in_seconds,
    }
    signing_input = f"{_segment(dict(_ACCESS_TOKEN_HEADER))}.{_segment(claims)}"
    sig = _sign(signing_input.encode("ascii"), secret)
    return f"{signing_input}.{_b64url_encode(sig)}"


def decode_access_token(token: str, secret: str) -> dict[str, JSONValue]:
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenError("invalid token")
    header_b64, claims_b64, sig_b64 = parts

    expected = _sign(f"{header_b64}.{claims_b64}".encode("ascii"), secret)
    try:
        provided = _b64url_decode(sig_b64)
    except ValueError as exc:
        raise TokenError("invalid token") from exc
    if not hmac.compare_digest(provided, expected):
        raise TokenError("invalid token")

    if _load_segment(header_b64).get("alg") != "HS256":
        raise TokenError("invalid token")

    claims = _load_segment(claims_b64)
    if claims.get("typ") != "access":
        raise TokenError("invalid token")
    exp = claims.get("exp")
    if not isinstance(exp, int):
        raise TokenError("invalid token")
    if int(time.time()) >= exp:
        raise TokenError("token expired")
    return claims
