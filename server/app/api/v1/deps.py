# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
# pyright: reportDeprecated=false
from __future__ import annotations

from collections.abc import Callable
from typing import NoReturn

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import TokenError, decode_access_token
from app.db.models import User
from app.db.session import get_db
from app.services.owner import resolve_owner
from app.services.subscription import resolve_subscription, tier_allows


_bearer_scheme = HTTPBearer(auto_error=False)


def unauthorized(detail: str = "Unauthorized") -> NoReturn:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_current_user(
    db: Session = Depends(get_db),
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> User:
    if creds is None:
        unauthorized()
    if creds.scheme.lower() != "bearer" or creds.credentials == "":
        unauthorized()

    try:
        payload = decode_access_token(creds.credentials, settings.auth_access_token_secret)
    except TokenError:
        unauthorized()

    sub = payload.get("sub")
    if not isinstance(sub, str) or sub == "":
        unauthorized()

    user = db.get(User, sub)
    if user is None:
        unauthorized()
    return user


def require_owner(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    # Admin surfaces answer 401, not 403, so they do not advertise themselves.
    if not resolve_owner(db, user_id=user.id, email=user.email).is_owner:
        unauthorized()
    return user


def require_tier(minimum: str) -> Callable[..., User]:
    def dependency(
        user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> User:
        view = resolve_subscription(db, user_id=user.id, email=user.email)
        if not tier_allows(view.tier, minimum):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Upgrade required")
        return user

    return dependency
