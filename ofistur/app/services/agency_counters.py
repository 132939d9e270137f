"""
Per-agency counter allocation.

Hands out human-facing sequence numbers (agency_credit_account_id,
agency_credit_entry_id) inside the caller's transaction. The counter row
is read with SELECT ... FOR UPDATE so two concurrent allocations for the
same (agency, key) serialize; a rollback of the caller's transaction
returns the number.
"""

import logging
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.models.agency_counter import AgencyCounter

logger = logging.getLogger("ofistur.counters")

CREDIT_ACCOUNT = "credit_account"
CREDIT_ENTRY = "credit_entry"


async def _lock_counter(db: AsyncSession, agency_id: int, key: str):
    result = await db.execute(
        select(AgencyCounter)
        .where(AgencyCounter.id_agency == agency_id, AgencyCounter.key == key)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_next_agency_counter(db: AsyncSession, agency_id: int, key: str) -> int:
    """
    Allocate the next value of an agency-scoped counter.

    Args:
        db: Session with an open transaction (the caller commits)
        agency_id: Owning agency
        key: Counter name (CREDIT_ACCOUNT, CREDIT_ENTRY)

    Returns:
        The allocated value, starting at 1 for a new (agency, key)
    """
    counter = await _lock_counter(db, agency_id, key)

    if counter is None:
        # First use. A concurrent creator may win the unique constraint;
        # the savepoint keeps the rest of the caller's work intact.
        try:
            async with db.begin_nested():
                counter = AgencyCounter(id_agency=agency_id, key=key, next_value=2)
                db.add(counter)
                await db.flush()
            logger.debug("counter_allocated", extra={"agency_id": agency_id, "key": key, "value": 1})
            return 1
        except IntegrityError:
            logger.debug("counter_create_race_retry", extra={"agency_id": agency_id, "key": key})
            counter = await _lock_counter(db, agency_id, key)
            if counter is None:
                raise

    value = counter.next_value
    counter.next_value = value + 1
    await db.flush()

    logger.debug("counter_allocated", extra={"agency_id": agency_id, "key": key, "value": value})
    return value
