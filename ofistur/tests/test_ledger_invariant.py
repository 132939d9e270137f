"""
Balance == sum(amount * sign(doc_type)) across mixed operation sequences,
and lost-update protection of the balance re-read.
"""

import random
import pytest
from decimal import Decimal
from sqlalchemy import update

from ofistur.app.db.session import unit_of_work
from ofistur.app.core.exceptions import LedgerValidationError, ResourceNotFoundError
from ofistur.app.domain.credit.accounts import create_account, set_account_enabled
from ofistur.app.domain.credit.adjustments import adjust_balance
from ofistur.app.domain.credit.balance import apply_balance_delta, lock_account
from ofistur.app.domain.credit.entries import post_entry, update_entry, delete_entry
from ofistur.app.domain.credit.reconciliation import reconcile_account
from ofistur.app.models.credit_account import CreditAccount

DOC_TYPES = ["receipt", "investment", "manual", "adjust_up", "adjust_down", "booking"]


async def _assert_consistent(db, auth, account_id):
    report = await reconcile_account(db, auth, account_id)
    await db.commit()
    assert report["consistent"], report
    return report


# TEST 1: Randomized sequence keeps the invariant
@pytest.mark.asyncio
async def test_invariant_holds_after_mixed_operations(db_session, ledger):
    rng = random.Random(20251018)

    async with unit_of_work(db_session):
        account, _ = await create_account(
            db_session, ledger.admin, currency="ARS", client_id=ledger.client_id, initial_balance="1000"
        )
    account_id = account.id_credit_account
    live = []

    for step in range(40):
        op = rng.choice(["post", "post", "post", "reclassify", "delete", "adjust"])

        async with unit_of_work(db_session):
            if op == "post" or not live:
                entry = await post_entry(
                    db_session, ledger.admin,
                    amount=f"{rng.randint(1, 50000) / 100:.2f}",
                    currency="ARS", concept=f"Paso {step}",
                    doc_type=rng.choice(DOC_TYPES), account_id=account_id,
                )
                live.append(entry.id_entry)
            elif op == "reclassify":
                await update_entry(db_session, ledger.admin, rng.choice(live), doc_type=rng.choice(DOC_TYPES))
            elif op == "delete":
                entry_id = live.pop(rng.randrange(len(live)))
                await delete_entry(db_session, ledger.admin, entry_id)
            else:
                result = await adjust_balance(
                    db_session, ledger.admin, account_id,
                    target_balance=str(rng.randint(-100000, 100000) / 100), reason=f"Paso {step}",
                )
                if result["entry"] is not None:
                    live.append(result["entry"].id_entry)

        await _assert_consistent(db_session, ledger.admin, account_id)

    report = await _assert_consistent(db_session, ledger.admin, account_id)
    # Opening entry plus live entries
    assert report["entry_count"] == len(live) + 1


# TEST 2: Balance is re-read under lock, not taken from the identity map
@pytest.mark.asyncio
async def test_posting_uses_fresh_balance(db_session, ledger, fetch_account):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.admin, currency="ARS", client_id=ledger.client_id)
    account_id = account.id_credit_account
    assert account.balance == Decimal("0")

    # Another writer moves the balance; the ORM copy held here stays at 0
    await db_session.execute(
        update(CreditAccount)
        .where(CreditAccount.id_credit_account == account_id)
        .values(balance=Decimal("50"))
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert account.balance == Decimal("0")

    async with unit_of_work(db_session):
        await post_entry(db_session, ledger.admin, amount="100", currency="ARS",
                         concept="Cobro", doc_type="receipt", account_id=account_id)

    assert (await fetch_account(account_id)).balance == Decimal("150.00")

    # The external write is visible as drift
    report = await reconcile_account(db_session, ledger.admin, account_id)
    assert report["drift"] == Decimal("50.00")
    assert report["consistent"] is False
    await db_session.commit()


@pytest.mark.asyncio
async def test_lock_account_refreshes_identity_map(db_session, ledger):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.admin, currency="USD", client_id=ledger.client_id)
    account_id = account.id_credit_account

    await db_session.execute(
        update(CreditAccount)
        .where(CreditAccount.id_credit_account == account_id)
        .values(balance=Decimal("7.25"))
        .execution_options(synchronize_session=False)
    )

    locked = await lock_account(db_session, account_id)
    assert locked is account
    assert locked.balance == Decimal("7.25")

    updated = await apply_balance_delta(db_session, account_id, Decimal("-2.25"))
    assert updated.balance == Decimal("5.00")
    await db_session.rollback()


# TEST 3: A failure mid-operation leaves nothing behind
@pytest.mark.asyncio
async def test_failed_unit_of_work_rolls_back_entry_and_balance(db_session, ledger, fetch_account, count_entries):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.admin, currency="ARS", client_id=ledger.client_id)
    account_id = account.id_credit_account

    with pytest.raises(RuntimeError):
        async with unit_of_work(db_session):
            await post_entry(db_session, ledger.admin, amount="10", currency="ARS",
                             concept="Cobro", account_id=account_id)
            raise RuntimeError("connection dropped")

    assert (await fetch_account(account_id)).balance == Decimal("0")
    assert await count_entries(account_id) == 0


# TEST 4: Edits and deletes read the entry under the account lock
async def _post_receipt(db, ledger):
    async with unit_of_work(db):
        entry = await post_entry(db, ledger.admin, amount="100", currency="ARS",
                                 concept="Cobro", doc_type="receipt", client_id=ledger.client_id)
    return entry


@pytest.mark.asyncio
async def test_reclassify_after_concurrent_reclassify(db_session, ledger, session_factory, fetch_account):
    entry = await _post_receipt(db_session, ledger)
    entry_id, account_id = entry.id_entry, entry.account_id

    async with session_factory() as other:
        async with unit_of_work(other):
            await update_entry(other, ledger.admin, entry_id, doc_type="investment")

    # This session still holds the receipt version
    assert entry.doc_type == "receipt"

    async with unit_of_work(db_session):
        updated = await update_entry(db_session, ledger.admin, entry_id, doc_type="investment")

    assert updated.doc_type == "investment"
    assert (await fetch_account(account_id)).balance == Decimal("-100.00")
    await _assert_consistent(db_session, ledger.admin, account_id)


@pytest.mark.asyncio
async def test_delete_after_concurrent_reclassify(db_session, ledger, session_factory, fetch_account, count_entries):
    entry = await _post_receipt(db_session, ledger)
    entry_id, account_id = entry.id_entry, entry.account_id

    async with session_factory() as other:
        async with unit_of_work(other):
            await update_entry(other, ledger.admin, entry_id, doc_type="investment")

    async with unit_of_work(db_session):
        deleted = await delete_entry(db_session, ledger.admin, entry_id)

    assert deleted.doc_type == "investment"
    assert (await fetch_account(account_id)).balance == Decimal("0.00")
    assert await count_entries(account_id) == 0
    await _assert_consistent(db_session, ledger.admin, account_id)


@pytest.mark.asyncio
async def test_edit_after_concurrent_delete_is_not_found(db_session, ledger, session_factory, fetch_account):
    entry = await _post_receipt(db_session, ledger)
    entry_id, account_id = entry.id_entry, entry.account_id

    async with session_factory() as other:
        async with unit_of_work(other):
            await delete_entry(other, ledger.admin, entry_id)

    with pytest.raises(ResourceNotFoundError):
        async with unit_of_work(db_session):
            await update_entry(db_session, ledger.admin, entry_id, doc_type="investment")

    assert (await fetch_account(account_id)).balance == Decimal("0.00")


# TEST 5: Enabled flag is re-checked on the locked row
@pytest.mark.asyncio
async def test_posting_after_concurrent_disable(db_session, ledger, session_factory, count_entries):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.admin, currency="ARS", client_id=ledger.client_id)
    account_id = account.id_credit_account

    async with session_factory() as other:
        async with unit_of_work(other):
            await set_account_enabled(other, ledger.admin, account_id, False)

    assert account.enabled is True

    with pytest.raises(LedgerValidationError) as exc_info:
        async with unit_of_work(db_session):
            await post_entry(db_session, ledger.admin, amount="10", currency="ARS",
                             concept="Pago", account_id=account_id)

    assert exc_info.value.field == "account_id"
    assert await count_entries(account_id) == 0
