"""
User roles enumeration.

Defines the agency staff roles known to the back-office.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        MANAGER: Agency owner/manager ("gerente")
        ADMINISTRATIVE: Back-office finance staff
        DEVELOPER: Platform staff with full access
        LEADER: Team leader, read/post access to the ledger
        SELLER: Sales staff, no ledger access by default
    """
    MANAGER = "MANAGER"
    ADMINISTRATIVE = "ADMINISTRATIVE"
    DEVELOPER = "DEVELOPER"
    LEADER = "LEADER"
    SELLER = "SELLER"
