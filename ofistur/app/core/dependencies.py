"""
Authentication dependencies for FastAPI.

Turns a bearer token into an AuthContext for the ledger routes.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from ofistur.app.core.auth import AuthContext
from ofistur.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from ofistur.app.core.jwt import decode_access_token
from ofistur.app.db.session import get_db
from ofistur.app.models.user import User

# auto_error=False so a missing header goes through our own 401 format
security = HTTPBearer(auto_error=False)


def _first_int(payload: dict, *keys: str) -> Optional[int]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> AuthContext:
    """
    FastAPI dependency resolving the caller into an AuthContext.

    Checks:
    1. Bearer token present, signature and expiry valid
    2. Token names a user (`user_id`)
    3. User exists and is active (real-time check)
    4. Agency comes from the token, or from the user row when absent;
       a token agency that disagrees with the user row is rejected

    Raises:
        AuthenticationError: 401 for missing/invalid identity
        InsufficientPermissionsError: 403 for an inactive user or agency mismatch
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = _first_int(payload, "user_id", "id_user", "uid")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    user = await db.get(User, user_id)
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise InsufficientPermissionsError("User account is inactive")

    agency_id = _first_int(payload, "agency_id", "id_agency", "aid") or user.id_agency
    if agency_id != user.id_agency:
        raise InsufficientPermissionsError("Token agency does not match user agency")

    role = str(payload.get("role") or user.role.value)

    return AuthContext(actor_id=user.id_user, agency_id=agency_id, role=role)
