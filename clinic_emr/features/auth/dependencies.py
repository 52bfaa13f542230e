from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from clinic_emr.features.auth.models import User
from clinic_emr.features.auth.service import AuthService
from clinic_emr.core.security import decode_token
from clinic_emr.shared.exceptions import CredentialsException, ForbiddenException


# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> User:
    """
    Dependency to get current authenticated user.

    Args:
        credentials: HTTP Bearer credentials

    Returns:
        User: Current authenticated user, used as the actor of engine operations

    Raises:
        CredentialsException: If credentials are invalid
    """
    if credentials is None:
        raise CredentialsException("Not authenticated")

    token = credentials.credentials

    payload = decode_token(token)
    if payload is None:
        raise CredentialsException("Invalid authentication credentials")

    email: str = payload.get("sub")
    if email is None:
        raise CredentialsException("Invalid authentication credentials")

    user = await AuthService.get_user_by_email(email)
    if user is None:
        raise CredentialsException("User not found")

    if not user.is_active:
        raise CredentialsException("Inactive user")

    return user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Dependency that only lets clinic and super master admins through."""
    if not current_user.is_admin:
        raise ForbiddenException("Admin privileges required")
    return current_user
