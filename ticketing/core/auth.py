"""
Caller identity for API handlers.

The identity service issues bearer tokens; handlers trust the decoded
claims and never re-derive them. With TKT_AUTH_DISABLED (the development
default) the identity is taken from X-User-* headers instead.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Depends
from .security import decode_access_token


USER_TYPES = {"admin", "operation", "partner", "customer"}


@dataclass
class UserContext:
    user_type: str
    user_id: Optional[int] = None
    role: Optional[str] = None
    partner_id: Optional[int] = None
    name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.user_type in {"admin", "operation"}


def _auth_disabled() -> bool:
    return os.getenv("TKT_AUTH_DISABLED", "true").lower() in {"1", "true", "yes"}


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def _optional_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid identity claims")


def get_current_user(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_type: Optional[str] = Header(None, alias="X-User-Type"),
    x_partner_id: Optional[str] = Header(None, alias="X-Partner-Id"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> UserContext:
    if _auth_disabled():
        user_type = (x_user_type or "admin").strip().lower()
        if user_type not in USER_TYPES:
            raise HTTPException(status_code=401, detail="Unknown user type")
        return UserContext(
            user_type=user_type,
            user_id=_optional_int(x_user_id),
            role=user_type,
            partner_id=_optional_int(x_partner_id),
            name=x_user_name,
        )
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_access_token(token)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_type = str(claims.get("user_type") or "").strip().lower()
    user_id = _optional_int(claims.get("sub"))
    if user_type not in USER_TYPES or user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return UserContext(
        user_type=user_type,
        user_id=user_id,
        role=str(claims.get("role") or user_type),
        partner_id=_optional_int(claims.get("partner_id")),
        name=claims.get("name"),
    )


def require_user_types(*user_types: str):
    def _dep(user: UserContext = Depends(get_current_user)):
        allowed = {t.strip().lower() for t in user_types if t and t.strip()}
        if allowed and user.user_type not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return _dep
