"""
Explicit caller context for ledger operations.

The HTTP layer resolves a request into an AuthContext once; every ledger
operation receives it as an argument and never looks at tokens itself.
"""

from dataclasses import dataclass
from typing import Iterable

from ofistur.app.core.config import settings
from ofistur.app.core.exceptions import InsufficientPermissionsError


@dataclass(frozen=True)
class AuthContext:
    actor_id: int
    agency_id: int
    role: str

    @property
    def normalized_role(self) -> str:
        return (self.role or "").strip().upper()

    def has_role(self, roles: Iterable[str]) -> bool:
        return self.normalized_role in {r.strip().upper() for r in roles}

    @property
    def can_access_ledger(self) -> bool:
        return self.has_role(settings.ledger_access_roles)

    @property
    def is_ledger_admin(self) -> bool:
        return self.has_role(settings.ledger_admin_roles)


def ensure_ledger_access(auth: AuthContext) -> None:
    if not auth.can_access_ledger:
        raise InsufficientPermissionsError("No ledger access for this role")


def ensure_ledger_admin(auth: AuthContext, action: str = "modify ledger entries") -> None:
    ensure_ledger_access(auth)
    if not auth.is_ledger_admin:
        raise InsufficientPermissionsError(
            f"Not allowed to {action}",
            details={"required_roles": list(settings.ledger_admin_roles)}
        )


def ensure_same_agency(auth: AuthContext, agency_id: int, resource: str) -> None:
    if agency_id != auth.agency_id:
        raise InsufficientPermissionsError(
            f"Not authorized for this {resource}",
            details={"resource": resource}
        )
