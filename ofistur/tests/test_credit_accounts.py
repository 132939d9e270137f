"""
Tests for account resolution, idempotent creation and account operations.
"""

import pytest
from decimal import Decimal
from sqlalchemy import select, func

from ofistur.app.db.session import unit_of_work
from ofistur.app.core.exceptions import (
    LedgerValidationError, InsufficientPermissionsError, ResourceNotFoundError
)
from ofistur.app.domain.credit import accounts
from ofistur.app.domain.credit.accounts import (
    create_account, list_accounts, get_account, set_account_enabled
)
from ofistur.app.domain.credit.entries import post_entry
from ofistur.app.domain.credit.reconciliation import reconcile_account
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.credit_entry import CreditEntry


async def _count_accounts(db):
    result = await db.execute(select(func.count(CreditAccount.id_credit_account)))
    count = result.scalar_one()
    await db.commit()
    return count


# TEST 1: Idempotent creation
@pytest.mark.asyncio
async def test_create_account_is_idempotent(db_session, ledger):
    async with unit_of_work(db_session):
        first, created_first = await create_account(
            db_session, ledger.leader, currency="ars", client_id=ledger.client_id
        )
    first_id = first.id_credit_account

    async with unit_of_work(db_session):
        second, created_second = await create_account(
            db_session, ledger.leader, currency="ARS", client_id=ledger.client_id,
            initial_balance="500"
        )

    assert created_first is True
    assert created_second is False
    assert second.id_credit_account == first_id
    assert second.currency == "ARS"
    assert second.balance == Decimal("0")
    assert second.agency_credit_account_id == 1
    assert await _count_accounts(db_session) == 1


# TEST 2: Same subject, other currency is a separate account
@pytest.mark.asyncio
async def test_currency_is_part_of_identity(db_session, ledger):
    async with unit_of_work(db_session):
        ars, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)
        usd, _ = await create_account(db_session, ledger.leader, currency="USD", client_id=ledger.client_id)
        op, _ = await create_account(db_session, ledger.leader, currency="ARS", operator_id=ledger.operator_id)

    assert len({ars.id_credit_account, usd.id_credit_account, op.id_credit_account}) == 3
    assert [ars.agency_credit_account_id, usd.agency_credit_account_id, op.agency_credit_account_id] == [1, 2, 3]
    assert op.subject_type == "OPERATOR"
    assert ars.subject_type == "CLIENT"


# TEST 3: Opening balance is backed by an entry
@pytest.mark.asyncio
async def test_initial_balance_posts_opening_entry(db_session, ledger):
    async with unit_of_work(db_session):
        account, created = await create_account(
            db_session, ledger.leader, currency="ARS", client_id=ledger.client_id,
            initial_balance="-1.250,50"
        )
    account_id = account.id_credit_account

    assert created is True
    assert account.balance == Decimal("-1250.50")

    result = await db_session.execute(select(CreditEntry).where(CreditEntry.account_id == account_id))
    entries = result.scalars().all()
    assert len(entries) == 1
    assert entries[0].doc_type == "adjust_down"
    assert entries[0].amount == Decimal("1250.50")
    assert entries[0].concept == "Saldo inicial"

    report = await reconcile_account(db_session, ledger.leader, account_id)
    assert report["consistent"] is True
    assert report["drift"] == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.parametrize("initial_balance", ["doce", "123456789012345678901234567890", "-10000000000000000"])
async def test_invalid_initial_balance(db_session, ledger, initial_balance):
    with pytest.raises(LedgerValidationError) as exc_info:
        async with unit_of_work(db_session):
            await create_account(
                db_session, ledger.leader, currency="ARS", client_id=ledger.client_id,
                initial_balance=initial_balance
            )
    assert exc_info.value.field == "initial_balance"
    assert await _count_accounts(db_session) == 0


# TEST 4: Subject validation
@pytest.mark.asyncio
async def test_subject_must_be_exactly_one(db_session, ledger):
    with pytest.raises(LedgerValidationError):
        await create_account(db_session, ledger.leader, currency="ARS")
    with pytest.raises(LedgerValidationError):
        await create_account(
            db_session, ledger.leader, currency="ARS",
            client_id=ledger.client_id, operator_id=ledger.operator_id
        )


@pytest.mark.asyncio
async def test_currency_required(db_session, ledger):
    with pytest.raises(LedgerValidationError) as exc_info:
        await create_account(db_session, ledger.leader, currency="  ", client_id=ledger.client_id)
    assert exc_info.value.field == "currency"


@pytest.mark.asyncio
async def test_cross_tenant_subject_rejected(db_session, ledger):
    with pytest.raises(InsufficientPermissionsError):
        await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.other_client_id)
    with pytest.raises(InsufficientPermissionsError):
        await create_account(db_session, ledger.leader, currency="ARS", operator_id=ledger.other_operator_id)


@pytest.mark.asyncio
async def test_unknown_subject_not_found(db_session, ledger):
    with pytest.raises(ResourceNotFoundError):
        await create_account(db_session, ledger.leader, currency="ARS", client_id=99999)


def test_legacy_subject_type_must_match():
    with pytest.raises(LedgerValidationError) as exc_info:
        accounts.check_subject_shape(client_id=None, operator_id=3, subject_type="client")
    assert exc_info.value.field == "client_id"

    with pytest.raises(LedgerValidationError):
        accounts.check_subject_shape(client_id=1, operator_id=None, subject_type="SUPPLIER")

    accounts.check_subject_shape(client_id=1, operator_id=None, subject_type="CLIENT")


@pytest.mark.asyncio
async def test_seller_has_no_ledger_access(db_session, ledger):
    with pytest.raises(InsufficientPermissionsError):
        await create_account(db_session, ledger.seller, currency="ARS", client_id=ledger.client_id)


# TEST 5: Race on first creation
@pytest.mark.asyncio
async def test_create_race_loser_reads_winner(db_session, ledger, monkeypatch):
    """The loser of a concurrent create gets the existing account, not an error."""
    async with unit_of_work(db_session):
        winner, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)
    winner_id = winner.id_credit_account

    real_find = accounts.find_account
    calls = {"n": 0}

    async def find_missing_once(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            # The other transaction has not committed yet from our point of view
            return None
        return await real_find(*args, **kwargs)

    monkeypatch.setattr(accounts, "find_account", find_missing_once)

    async with unit_of_work(db_session):
        loser, created = await accounts.find_or_create_account(
            db_session, ledger.leader, ledger.client_id, None, "ARS"
        )

    assert created is False
    assert loser.id_credit_account == winner_id
    assert calls["n"] == 2
    assert await _count_accounts(db_session) == 1

    monkeypatch.setattr(accounts, "find_account", real_find)
    async with unit_of_work(db_session):
        fresh, created = await create_account(db_session, ledger.leader, currency="USD", client_id=ledger.client_id)

    # The loser's savepoint rollback returned its sequence number
    assert created is True
    assert fresh.agency_credit_account_id == 2


# TEST 6: Listing with filters and cursor
@pytest.mark.asyncio
async def test_list_accounts_filters_and_pages(db_session, ledger):
    async with unit_of_work(db_session):
        for currency in ("ARS", "USD", "EUR"):
            await create_account(db_session, ledger.leader, currency=currency, client_id=ledger.client_id)
        await create_account(db_session, ledger.leader, currency="ARS", operator_id=ledger.operator_id)
        await create_account(db_session, ledger.other_admin, currency="ARS", client_id=ledger.other_client_id)

    page = await list_accounts(db_session, ledger.leader, take=2)
    assert len(page["items"]) == 2
    assert page["next_cursor"] == page["items"][-1].id_credit_account

    seen = [a.id_credit_account for a in page["items"]]
    while page["next_cursor"] is not None:
        page = await list_accounts(db_session, ledger.leader, take=2, cursor=page["next_cursor"])
        seen.extend(a.id_credit_account for a in page["items"])

    assert len(seen) == 4
    assert len(set(seen)) == 4

    by_client = await list_accounts(db_session, ledger.leader, client_id=ledger.client_id)
    assert len(by_client["items"]) == 3
    assert by_client["next_cursor"] is None

    ars = await list_accounts(db_session, ledger.leader, currency="ars")
    assert {a.currency for a in ars["items"]} == {"ARS"}
    assert len(ars["items"]) == 2
    await db_session.commit()


@pytest.mark.asyncio
async def test_list_accounts_entry_counts(db_session, ledger):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)
        for _ in range(3):
            await post_entry(db_session, ledger.leader, amount="10", currency="ARS",
                             concept="Pago", account_id=account.id_credit_account)

    page = await list_accounts(db_session, ledger.leader)
    assert page["entry_counts"][account.id_credit_account] == 3
    await db_session.commit()


# TEST 7: Detail with recent entries
@pytest.mark.asyncio
async def test_get_account_with_recent_entries(db_session, ledger):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)
        for i in range(3):
            await post_entry(db_session, ledger.leader, amount=str(10 + i), currency="ARS",
                             concept=f"Pago {i}", account_id=account.id_credit_account)

    detail = await get_account(db_session, ledger.leader, account.id_credit_account, recent=2)
    assert detail["entry_count"] == 3
    assert [e.concept for e in detail["recent_entries"]] == ["Pago 2", "Pago 1"]
    assert detail["account"].client.first_name == "Juan"

    with pytest.raises(InsufficientPermissionsError):
        await get_account(db_session, ledger.other_admin, account.id_credit_account)
    with pytest.raises(ResourceNotFoundError):
        await get_account(db_session, ledger.leader, 424242)
    await db_session.commit()


# TEST 8: Enable / disable
@pytest.mark.asyncio
async def test_disabled_account_rejects_postings(db_session, ledger, fetch_account):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)
    account_id = account.id_credit_account

    async with unit_of_work(db_session):
        await set_account_enabled(db_session, ledger.leader, account_id, False)

    with pytest.raises(LedgerValidationError) as exc_info:
        async with unit_of_work(db_session):
            await post_entry(db_session, ledger.leader, amount="10", currency="ARS",
                             concept="Pago", account_id=account_id)
    assert exc_info.value.field == "account_id"

    # Subject + currency resolves to the same disabled account
    with pytest.raises(LedgerValidationError):
        async with unit_of_work(db_session):
            await post_entry(db_session, ledger.leader, amount="10", currency="ARS",
                             concept="Pago", client_id=ledger.client_id)

    async with unit_of_work(db_session):
        await set_account_enabled(db_session, ledger.leader, account_id, True)
        await post_entry(db_session, ledger.leader, amount="10", currency="ARS",
                         concept="Pago", account_id=account_id)

    assert (await fetch_account(account_id)).balance == Decimal("10.00")


@pytest.mark.asyncio
async def test_toggle_requires_value(db_session, ledger):
    async with unit_of_work(db_session):
        account, _ = await create_account(db_session, ledger.leader, currency="ARS", client_id=ledger.client_id)

    with pytest.raises(LedgerValidationError):
        await set_account_enabled(db_session, ledger.leader, account.id_credit_account, None)
