import hashlib
from functools import lru_cache
from typing import Any, Callable, Optional, cast

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resgrid.models.user import ROLE_LEVELS, User, UserRole, UserStatus
from resgrid.shared.core.config import get_settings
from resgrid.shared.core.exceptions import ConfigurationError
from resgrid.shared.db.session import get_db

logger = structlog.get_logger()

__all__ = [
    "CurrentUser",
    "decode_jwt",
    "get_current_user",
    "requires_role",
    "UserRole",
]

security = HTTPBearer(auto_error=False)


def _hash_subject(value: str | None) -> str | None:
    if not value:
        return None
    return hashlib.sha256(value.strip().lower().encode()).hexdigest()[:12]


class CurrentUser(BaseModel):
    """The authenticated caller, resolved from the bearer credential."""

    id: str
    external_id: str
    email: str
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.ACTIVE


def decode_jwt(token: str) -> dict[str, Any]:
    """
    Verify a bearer JWT issued by the identity provider.

    Raises:
        HTTPException 401 if the token is expired, tampered with or malformed
    """
    settings = get_settings()
    if not settings.AUTH_JWT_SECRET:
        logger.error("jwt_secret_missing_in_decode")
        raise ConfigurationError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUDIENCE,
        )
        return cast(dict[str, Any], payload)
    except jwt.ExpiredSignatureError:
        logger.warning("jwt_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("jwt_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized credentials",
        )


async def _get_or_provision_user(
    db: AsyncSession, external_id: str, email: Optional[str]
) -> User:
    result = await db.execute(select(User).where(User.external_id == external_id))
    user = result.scalar_one_or_none()
    if user is not None:
        return user

    user = User(
        external_id=external_id,
        email=email or f"{external_id}@fallback.io",
        role=UserRole.USER.value,
        status=UserStatus.ACTIVE.value,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("user_provisioned", subject_hash=_hash_subject(external_id))
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """
    JWT verification + user lookup. First-time subjects are provisioned as USER.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_jwt(credentials.credentials)
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized credentials",
        )

    user = await _get_or_provision_user(db, str(subject), payload.get("email"))
    logger.debug("user_authenticated", user_id=user.id, role=user.role)
    return CurrentUser(
        id=user.id,
        external_id=user.external_id,
        email=user.email,
        role=UserRole(user.role),
        status=UserStatus(user.status),
    )


def has_role(user_role: UserRole, required_role: UserRole) -> bool:
    return ROLE_LEVELS.get(user_role, 0) >= ROLE_LEVELS[required_role]


@lru_cache(maxsize=16)
def requires_role(required_role: str) -> Callable[..., Any]:
    """
    FastAPI dependency for RBAC.

    Usage:
        @router.put("/admin-only")
        async def admin_only(user: CurrentUser = Depends(requires_role("ADMIN"))):
            ...

    Access Levels:
    - SUPERADMIN: role management
    - ADMIN: resource mutations, access-request approval
    - USER: read access, own access requests
    """
    required = UserRole(required_role)

    def role_checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_role(user.role, required):
            logger.warning(
                "insufficient_permissions",
                user_id=user.id,
                user_role=user.role.value,
                required_role=required.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required.value}",
            )
        return user

    return role_checker
