"""
Transactional balance helpers.

Every balance mutation goes through `lock_account`, which re-reads the
account row with SELECT ... FOR UPDATE inside the caller's transaction and
refreshes any copy already held in the identity map. The new balance is
always computed from that fresh value, never from an earlier read.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.core.exceptions import ResourceNotFoundError
from ofistur.app.models.credit_account import CreditAccount

logger = logging.getLogger("ofistur.credit")


async def lock_account(db: AsyncSession, account_id: int) -> CreditAccount:
    result = await db.execute(
        select(CreditAccount)
        .where(CreditAccount.id_credit_account == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise ResourceNotFoundError("Credit account", account_id)
    return account


async def apply_balance_delta(db: AsyncSession, account_id: int, delta: Decimal) -> CreditAccount:
    """Add `delta` to the freshly locked balance. Returns the locked account."""
    account = await lock_account(db, account_id)
    previous = Decimal(account.balance or 0)
    account.balance = previous + Decimal(delta)
    await db.flush()
    logger.debug(
        "balance_delta_applied",
        extra={"account_id": account_id, "previous": str(previous), "delta": str(delta)}
    )
    return account


async def set_balance(db: AsyncSession, account_id: int, target: Decimal) -> CreditAccount:
    """Assign an absolute balance. Only the balance adjuster uses this."""
    account = await lock_account(db, account_id)
    account.balance = Decimal(target)
    await db.flush()
    return account
