"""Role-Based Access Control (RBAC) utilities.

Identity is already established upstream; this module only reads the actor
id and role carried by the bearer token and enforces the role hierarchy.
"""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from stockpilot.core.security import decode_access_token


class UserRole(str, Enum):
    """User roles for RBAC."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    EMPLOYEE = "employee"


# Role hierarchy: superadmin > admin > employee
ROLE_HIERARCHY = {
    UserRole.SUPERADMIN: 3,
    UserRole.ADMIN: 2,
    UserRole.EMPLOYEE: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The actor's id.
        email: The actor's email address, if the token carries one.
        role: The actor's role (superadmin/admin/employee).
        id: Alias for user_id.
    """

    def __init__(self, user_id: int, role: UserRole, email: Optional[str] = None):
        self.user_id = user_id
        self.id = user_id
        self.role = role
        self.email = email


def _token_payload(request: Request) -> Optional[dict]:
    """Read the JWT from the Authorization header, falling back to the access_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)
            if payload is not None:
                return payload

    cookie_token = request.cookies.get("access_token")
    if cookie_token:
        return decode_access_token(cookie_token)
    return None


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated actor from the JWT token."""
    payload = _token_payload(request)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
        actor_id = int(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid identity in token",
        )

    return TokenData(user_id=actor_id, role=user_role, email=payload.get("email"))


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


RequireSuperadmin = Annotated[TokenData, Depends(require_role(UserRole.SUPERADMIN))]
RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireEmployee = Annotated[TokenData, Depends(require_role(UserRole.EMPLOYEE))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
