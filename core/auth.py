"""
core/auth.py

Staff principal for the role-gated /iot endpoints.

Session issuance happens elsewhere; this module only consumes the already issued local
session token: an HS256 JWT signed with JWT_SECRET, issuer "local", with `exp`, `sub` and
`role` claims. Verification uses PyJWT.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import jwt
from fastapi import Header, HTTPException, Request

from .errors import StaffAuthError

logger = logging.getLogger(__name__)

LOCAL_ISSUER = "local"


@dataclass(frozen=True)
class StaffPrincipal:
    """Authenticated operator calling a staff endpoint."""
    user_id: str
    role: str
    email: Optional[str] = None


def verify_local_token(token: str, secret: Optional[str], allowed_roles: Iterable[str]) -> StaffPrincipal:
    """
    Verify a local session token and check the role.

    Args:
        token (str): Encoded JWT.
        secret (Optional[str]): HMAC secret; None means staff auth is not configured.
        allowed_roles (Iterable[str]): Roles permitted on staff endpoints.

    Returns:
        StaffPrincipal: The principal carried by the token.

    Raises:
        StaffAuthError: 401 for a missing, malformed, expired or foreign token;
            403 for a valid token whose role is not allowed.
    """
    if not secret:
        raise StaffAuthError("Staff authentication is not configured", status_code=401)
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=LOCAL_ISSUER,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise StaffAuthError("Session expired", status_code=401)
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected staff token: {e}")
        raise StaffAuthError("Invalid session token", status_code=401)

    role = str(claims.get("role") or "")
    if role not in set(allowed_roles):
        raise StaffAuthError("Insufficient role for this operation", status_code=403)
    return StaffPrincipal(user_id=str(claims["sub"]), role=role, email=claims.get("email"))


def require_staff(request: Request, authorization: Optional[str] = Header(None)) -> StaffPrincipal:
    """
    FastAPI dependency: resolve the staff principal from the Authorization header.

    Raises:
        HTTPException: 401 or 403, mirroring StaffAuthError.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        return verify_local_token(
            token, request.app.state.jwt_secret, request.app.state.staff_roles
        )
    except StaffAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
