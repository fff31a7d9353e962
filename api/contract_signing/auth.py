from typing import Optional
from fastapi import Cookie, Depends, Header
from itsdangerous import BadData
from pydantic import BaseModel
from sqlmodel import Session

from .db import get_session
from .errors import Unauthenticated
from .models import User
from .utils import make_token, read_token


class AccessContext(BaseModel):
    user_id: int
    tenant_id: int

    @property
    def actor(self) -> str:
        return f"user:{self.user_id}"


def issue_session_token(user: User) -> str:
    return make_token({"user_id": user.id, "tenant_id": user.tenant_id})


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def require_user(
    authorization: Optional[str] = Header(default=None),
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    session_cookie: Optional[str] = Cookie(default=None, alias="session"),
    session: Session = Depends(get_session),
) -> AccessContext:
    candidate = _bearer(authorization) or x_access_token or session_cookie
    if not candidate:
        raise Unauthenticated("Not authenticated")
    try:
        data = read_token(candidate)
    except BadData:
        raise Unauthenticated("Not authenticated", "invalid or expired session")
    user = session.get(User, data.get("user_id"))
    if not user:
        raise Unauthenticated("Not authenticated", "unknown user")
    return AccessContext(user_id=user.id, tenant_id=user.tenant_id)
