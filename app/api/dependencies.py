from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated, NoReturn

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.db.engine import async_session_factory, session_scope
from app.middleware.request_context import user_id_var
from app.models.principal import Principal
from app.repos.exam_repo import ExamRepo, InMemoryExamRepo
from app.repos.pg_exam_repo import PgExamRepo
from app.services import token_service
from app.services.errors import (
    ConflictError,
    ExamServiceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# Serves every request when DATABASE_URL is not configured.
exam_repo = InMemoryExamRepo()


async def get_exam_repo() -> AsyncGenerator[ExamRepo, None]:
    """Yield the repo for this request: Postgres when configured, else memory."""
    if async_session_factory is None:
        yield exam_repo
        return
    async with session_scope() as session:
        yield PgExamRepo(session)


async def require_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Principal:
    """Validate the bearer JWT and return the caller's Principal.

    Async so that the user id it records stays visible to the endpoint's
    log lines.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = token_service.decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    user_id_var.set(principal.user_id)
    logger.debug(
        "Token validated for user=%s roles=%s", principal.user_id, principal.roles
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    """

    async def _guard(
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


_STATUS_BY_ERROR: dict[type[ExamServiceError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateError: 422,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: 422,
}


def raise_http(exc: ExamServiceError) -> NoReturn:
    """Translate a service error into the matching HTTPException."""
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.warning(
        "Request rejected: %s (%s -> %d)",
        exc.message,
        type(exc).__name__,
        status_code,
    )
    raise HTTPException(status_code=status_code, detail=exc.message) from None


ExamRepoDep = Annotated[ExamRepo, Depends(get_exam_repo)]
UserDep = Annotated[Principal, Depends(require_user)]
AdminDep = Annotated[Principal, Depends(require_role("admin"))]
