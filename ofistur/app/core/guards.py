"""
Security guards for role-based access control on ledger routes.

Usage:
    @router.delete("/entries/{entry_id}")
    async def delete_entry(auth: AuthContext = Depends(require_ledger_admin)):
        ...
"""

from fastapi import Depends
from ofistur.app.core.auth import AuthContext, ensure_ledger_access, ensure_ledger_admin
from ofistur.app.core.dependencies import get_auth_context


async def require_ledger_access(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """
    Dependency for any ledger endpoint.

    Raises:
        InsufficientPermissionsError 403 if the role has no ledger access
    """
    ensure_ledger_access(auth)
    return auth


async def require_ledger_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """
    Dependency for entry edit/delete and balance adjustment.

    Raises:
        InsufficientPermissionsError 403 unless the role is in the admin tier
    """
    ensure_ledger_admin(auth)
    return auth
