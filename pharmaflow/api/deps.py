from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from pharmaflow.database import get_db
from pharmaflow.core.security import verify_access_token
from pharmaflow.core.permissions import PermissionChecker, UserSession
from pharmaflow.services.email_service import EmailService, get_email_service


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_session(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UserSession:
    """
    Dependency to get the acting user's session.
    Validates the JWT token and builds the session from its claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_access_token(credentials.credentials)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        logger.warning(f"Invalid user_id in token: {payload['sub']}")
        raise credentials_exception

    return UserSession.build(
        user_id=user_id,
        permissions=payload.get("permissions") or [],
        name=payload.get("name") or "",
        email=payload.get("email"),
        is_super_admin=bool(payload.get("is_super_admin", False)),
    )


async def get_permission_checker(
    session: Annotated[UserSession, Depends(get_current_session)],
) -> PermissionChecker:
    return PermissionChecker(session)


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.get("/", dependencies=[Depends(require_permissions("purchase_orders:view"))])
        async def get_purchase_order():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


def get_mailer() -> EmailService:
    return get_email_service()


# Type aliases for cleaner endpoint signatures
CurrentSession = Annotated[UserSession, Depends(get_current_session)]
DB = Annotated[AsyncSession, Depends(get_db)]
Mailer = Annotated[EmailService, Depends(get_mailer)]
