"""Role-Based Access Control (RBAC) utilities."""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from resortops.core.security import decode_access_token


class UserRole(str, Enum):
    """Staff roles carried in the portal's tokens."""

    OWNER = "owner"
    MANAGER = "manager"
    STAFF = "staff"


# Role hierarchy: owner > manager > staff
ROLE_HIERARCHY = {
    UserRole.OWNER: 3,
    UserRole.MANAGER: 2,
    UserRole.STAFF: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The staff member's id in the portal.
        email: The staff member's email address.
        role: The staff member's role (owner/manager/staff).
    """

    def __init__(self, user_id: int, email: str, role: UserRole):
        self.user_id = user_id
        self.email = email
        self.role = role

    @property
    def actor_id(self) -> str:
        """Identifier recorded on ledger entries and transitions."""
        return str(self.user_id)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _decode_request_token(request: Request) -> Optional[dict]:
    """Claims from the Bearer header, else from the access_token cookie."""
    candidates = []
    scheme, _, bearer = request.headers.get("Authorization", "").partition(" ")
    if scheme == "Bearer" and bearer:
        candidates.append(bearer)
    if request.cookies.get("access_token"):
        candidates.append(request.cookies["access_token"])

    for token in candidates:
        payload = decode_access_token(token)
        if payload is not None:
            return payload
    return None


def _token_data(payload: dict) -> TokenData:
    missing = [claim for claim in ("sub", "email", "role") if payload.get(claim) is None]
    if missing:
        raise _unauthorized(f"Token is missing {', '.join(missing)}")
    try:
        return TokenData(user_id=int(payload["sub"]), email=payload["email"], role=UserRole(payload["role"]))
    except ValueError:
        raise _unauthorized("Invalid subject or role in token")


async def get_current_user(request: Request) -> TokenData:
    """The staff member acting on this request, from their portal token."""
    payload = _decode_request_token(request)
    if payload is None:
        raise _unauthorized("Not authenticated")
    return _token_data(payload)


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


# Common role dependencies
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]
