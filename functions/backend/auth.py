"""
Bearer-token authentication for admin and subscriber endpoints.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query

from backend.db import DbClient
from backend.dependencies import get_db_client, get_identity_client
from backend.identity import IdentityClient, IdentityProviderError, IdentityUser
from shared.messages import t

logger = logging.getLogger(__name__)

MISSING_HEADER = "Unauthorized: Missing or invalid authorization header"
INVALID_TOKEN = "Unauthorized: Invalid token"
ADMIN_REQUIRED = "Forbidden: Admin access required"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from a `Bearer <token>` header value, if well formed."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user(
    identity: Optional[IdentityClient], authorization: Optional[str]
) -> Optional[IdentityUser]:
    token = bearer_token(authorization)
    if not token or identity is None:
        return None
    try:
        return identity.get_user(token)
    except IdentityProviderError:
        logger.exception("Token lookup failed")
        return None


def _require_identity(identity: Optional[IdentityClient]) -> IdentityClient:
    if identity is None:
        raise HTTPException(status_code=500, detail="Server configuration error")
    return identity


def require_admin(
    authorization: Optional[str] = Header(default=None),
    identity: Optional[IdentityClient] = Depends(get_identity_client),
    db: DbClient = Depends(get_db_client),
) -> IdentityUser:
    """Admit only authenticated users whose profile role is `admin`."""
    identity = _require_identity(identity)
    if not bearer_token(authorization):
        raise HTTPException(status_code=401, detail=MISSING_HEADER)
    user = resolve_user(identity, authorization)
    if user is None:
        raise HTTPException(status_code=401, detail=INVALID_TOKEN)
    profile = db.get_profile(user.id)
    if not profile or profile.role != "admin":
        logger.warning("Non-admin user %s attempted an admin action", user.id)
        raise HTTPException(status_code=403, detail=ADMIN_REQUIRED)
    return user


def require_user(
    authorization: Optional[str] = Header(default=None),
    identity: Optional[IdentityClient] = Depends(get_identity_client),
) -> IdentityUser:
    identity = _require_identity(identity)
    if not bearer_token(authorization):
        raise HTTPException(status_code=401, detail=MISSING_HEADER)
    user = resolve_user(identity, authorization)
    if user is None:
        raise HTTPException(status_code=401, detail=INVALID_TOKEN)
    return user


def require_subscriber(
    lang: Optional[str] = Query(default=None),
    authorization: Optional[str] = Header(default=None),
    identity: Optional[IdentityClient] = Depends(get_identity_client),
) -> IdentityUser:
    """Same gate as `require_user`, answering with the localized message."""
    identity = _require_identity(identity)
    user = resolve_user(identity, authorization)
    if user is None:
        raise HTTPException(status_code=401, detail=t("not_authenticated", lang))
    return user
