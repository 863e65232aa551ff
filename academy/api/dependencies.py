"""Authentication dependencies.

The identity provider issues ES256 access tokens; every lifecycle route
depends on ``require_user`` to turn the bearer token into a Principal.
Ownership of enrollments and attempts is checked later, inside the
orchestrator, because it needs ledger state.
"""

from __future__ import annotations

import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from academy.models.principal import Principal
from academy.services import token_service

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_user(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Principal:
    """Validate the bearer token and return the caller as a Principal.

    The user id is also left on ``request.state`` for the request log line.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise _unauthorized("Invalid token") from None

    roles = claims.get("roles") or ["user"]
    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(roles),
        name=claims.get("name", ""),
        email=claims.get("email", ""),
    )
    request.state.user_id = principal.user_id
    logger.debug("Token accepted for user=%s roles=%s", principal.user_id, sorted(roles))
    return principal


def require_role(role: str):
    """Dependency factory: 403 unless the caller holds ``role``.

    Usage: Depends(require_role("admin"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s", principal.user_id, role
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard
