"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ofistur.app.api.v1.endpoints import credit_accounts, credit_entries

router = APIRouter()

# Credit ledger
router.include_router(credit_accounts.router)
router.include_router(credit_entries.router)
