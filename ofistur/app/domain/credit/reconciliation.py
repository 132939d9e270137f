"""
Balance reconciliation.

Recomputes an account's balance from its entries and compares it with the
stored value. Read only.
"""

from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.core.auth import AuthContext, ensure_ledger_access
from ofistur.app.domain.credit.accounts import load_account
from ofistur.app.domain.credit.decimal_input import quantize_money
from ofistur.app.domain.credit.sign_policy import signed_delta
from ofistur.app.models.credit_entry import CreditEntry


async def computed_balance(db: AsyncSession, account_id: int) -> tuple[Decimal, int]:
    """Sum of amount * sign(doc_type) over the account's current entries."""
    result = await db.execute(
        select(CreditEntry.amount, CreditEntry.doc_type).where(CreditEntry.account_id == account_id)
    )
    total = Decimal("0")
    count = 0
    for amount, doc_type in result.all():
        total += signed_delta(amount, doc_type)
        count += 1
    return quantize_money(total), count


async def reconcile_account(db: AsyncSession, auth: AuthContext, account_id: int) -> Dict[str, Any]:
    ensure_ledger_access(auth)
    account = await load_account(db, auth, account_id)

    computed, count = await computed_balance(db, account_id)
    stored = quantize_money(Decimal(account.balance))
    drift = stored - computed

    return {
        "account_id": account_id,
        "stored_balance": stored,
        "computed_balance": computed,
        "drift": drift,
        "entry_count": count,
        "consistent": drift == 0,
    }
