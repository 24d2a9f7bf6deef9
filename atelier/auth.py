"""
Authentication and authorization dependencies.

``require_user`` resolves the bearer token to an ``AuthenticatedUser``;
``require_admin`` builds on it and checks the caller's profile role.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from atelier.db import ROLE_ADMIN, DbClient
from atelier.dependencies import get_db_client, get_identity_client
from atelier.errors import ExternalError, Forbidden, Unauthenticated
from atelier.identity import IdentityClient, IdentityUser

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str]
    token: str
    identity: IdentityUser


def _extract_token(authorization: str) -> str:
    # "Bearer" with nothing after it yields an empty token.
    scheme, _, credentials = authorization.strip().partition(" ")
    if scheme.lower() == BEARER_SCHEME:
        return credentials.strip()
    return authorization.strip()


def require_user(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityClient = Depends(get_identity_client),
) -> AuthenticatedUser:
    if not authorization:
        raise Unauthenticated("Token não enviado")

    token = _extract_token(authorization)
    if not token:
        raise Unauthenticated("Token inválido")
    try:
        user = identity.get_user(token)
    except ExternalError as exc:
        logger.info("Rejected bearer token: %s", exc.message)
        user = None
    if user is None:
        raise Unauthenticated("Token inválido")

    return AuthenticatedUser(id=user.id, email=user.email, token=token, identity=user)


def require_admin(
    user: AuthenticatedUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
) -> AuthenticatedUser:
    try:
        profile = db.get_profile(user.id)
    except ExternalError as exc:
        logger.warning("Profile lookup failed for %s: %s", user.id, exc.message)
        profile = None
    if profile is None or profile.role != ROLE_ADMIN:
        raise Forbidden("Acesso negado")
    return user
