"""
Signed access tokens (HS256 JWT) carrying the caller identity.

Tokens are minted by the identity service; this backend only verifies them.
`create_access_token` exists for service-to-service callers and tests.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

DEV_SECRET = "dev-jwt-secret-change-me"
DEFAULT_EXP_MINUTES = 720


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64url(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _segment(obj: dict[str, Any]) -> str:
    return _b64url(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


def _sign(signing_input: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()


def _secret() -> str:
    configured = (os.getenv("TKT_JWT_SECRET") or "").strip()
    if configured:
        return configured
    # prod must be configured explicitly
    if (os.getenv("TKT_ENV") or os.getenv("APP_ENV") or "dev").strip().lower() == "prod":
        return ""
    return DEV_SECRET


def _token_lifetime() -> timedelta:
    try:
        minutes = int(os.getenv("TKT_JWT_EXP_MIN", str(DEFAULT_EXP_MINUTES)))
    except ValueError:
        minutes = DEFAULT_EXP_MINUTES
    return timedelta(minutes=max(1, minutes))


def create_access_token(
    *,
    user_id: int,
    user_type: str,
    role: str | None = None,
    partner_id: Optional[int] = None,
    name: str | None = None,
) -> str:
    secret = _secret()
    if not secret:
        raise RuntimeError("TKT_JWT_SECRET is required when auth is enabled")
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "user_type": user_type,
        "role": role or user_type,
        "partner_id": partner_id,
        "name": name,
        "iat": int(issued.timestamp()),
        "exp": int((issued + _token_lifetime()).timestamp()),
    }
    body = f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(claims)}"
    return f"{body}.{_b64url(_sign(body, secret))}"


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry; raises ValueError on any problem."""
    secret = _secret()
    if not secret:
        raise ValueError("JWT secret not configured")
    try:
        header_part, claims_part, signature_part = token.split(".")
    except ValueError:
        raise ValueError("Malformed token")
    expected = _sign(f"{header_part}.{claims_part}", secret)
    if not secrets.compare_digest(expected, _unb64url(signature_part)):
        raise ValueError("Invalid signature")
    claims = json.loads(_unb64url(claims_part).decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("Invalid payload")
    expires_at = int(claims.get("exp") or 0)
    if expires_at <= 0:
        raise ValueError("Missing exp")
    if int(datetime.now(timezone.utc).timestamp()) >= expires_at:
        raise ValueError("Token expired")
    return claims
