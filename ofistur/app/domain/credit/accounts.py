"""
Account resolution and account-level operations.

An account is identified either by its id or by (agency, subject, currency),
where the subject is exactly one of a client or an operator. The
(agency, subject, currency) triple is unique in the database and doubles as
the idempotency key of find-or-create.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.core.auth import AuthContext, ensure_ledger_access, ensure_same_agency
from ofistur.app.core.config import settings
from ofistur.app.core.exceptions import LedgerValidationError, ResourceNotFoundError
from ofistur.app.domain.credit.decimal_input import parse_decimal_input, to_money
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.credit_entry import CreditEntry
from ofistur.app.models.subjects import Client, Operator
from ofistur.app.services import agency_counters
from ofistur.app.services.audit import AuditAction, log_event

logger = logging.getLogger("ofistur.credit")

SUBJECT_CLIENT = "CLIENT"
SUBJECT_OPERATOR = "OPERATOR"


def clamp_take(take: Optional[int], default: int, maximum: int) -> int:
    if take is None:
        return default
    return min(max(int(take), 1), maximum)


def normalize_currency(raw: Optional[str]) -> str:
    currency = (raw or "").strip().upper()
    if not currency:
        raise LedgerValidationError("currency", "currency is required")
    return currency


def check_subject_shape(
    client_id: Optional[int],
    operator_id: Optional[int],
    subject_type: Optional[str] = None
) -> None:
    """Exactly one of client_id / operator_id, consistent with a legacy subject_type."""
    has_client = client_id is not None
    has_operator = operator_id is not None

    legacy = (subject_type or "").strip().upper()
    if legacy:
        if legacy not in (SUBJECT_CLIENT, SUBJECT_OPERATOR):
            raise LedgerValidationError("subject_type", "subject_type must be CLIENT or OPERATOR")
        if legacy == SUBJECT_CLIENT and not has_client:
            raise LedgerValidationError("client_id", "subject_type=CLIENT requires client_id")
        if legacy == SUBJECT_OPERATOR and not has_operator:
            raise LedgerValidationError("operator_id", "subject_type=OPERATOR requires operator_id")

    if has_client == has_operator:
        raise LedgerValidationError("subject", "Must specify exactly one subject: client_id or operator_id")


async def check_subject_ownership(
    db: AsyncSession,
    auth: AuthContext,
    client_id: Optional[int],
    operator_id: Optional[int]
) -> None:
    if client_id is not None:
        subject = await db.get(Client, client_id)
        if subject is None:
            raise ResourceNotFoundError("Client", client_id)
        ensure_same_agency(auth, subject.id_agency, "client")
    else:
        subject = await db.get(Operator, operator_id)
        if subject is None:
            raise ResourceNotFoundError("Operator", operator_id)
        ensure_same_agency(auth, subject.id_agency, "operator")


async def find_account(
    db: AsyncSession,
    agency_id: int,
    client_id: Optional[int],
    operator_id: Optional[int],
    currency: str
) -> Optional[CreditAccount]:
    query = select(CreditAccount).where(
        CreditAccount.id_agency == agency_id,
        CreditAccount.currency == currency,
    )
    if client_id is not None:
        query = query.where(CreditAccount.client_id == client_id, CreditAccount.operator_id.is_(None))
    else:
        query = query.where(CreditAccount.operator_id == operator_id, CreditAccount.client_id.is_(None))

    result = await db.execute(query)
    return result.scalar_one_or_none()


async def find_or_create_account(
    db: AsyncSession,
    auth: AuthContext,
    client_id: Optional[int],
    operator_id: Optional[int],
    currency: str,
    enabled: bool = True
) -> Tuple[CreditAccount, bool]:
    """
    Return the account for (agency, subject, currency), creating it if needed.

    Two callers racing to create the same account both try the insert; the
    unique index rejects the loser, whose savepoint rolls back and who then
    reads the winner's row.

    Returns:
        (account, created)
    """
    account = await find_account(db, auth.agency_id, client_id, operator_id, currency)
    if account is not None:
        return account, False

    try:
        async with db.begin_nested():
            number = await agency_counters.get_next_agency_counter(
                db, auth.agency_id, agency_counters.CREDIT_ACCOUNT
            )
            account = CreditAccount(
                id_agency=auth.agency_id,
                agency_credit_account_id=number,
                client_id=client_id,
                operator_id=operator_id,
                currency=currency,
                balance=Decimal("0"),
                enabled=enabled,
            )
            db.add(account)
            await db.flush()
    except IntegrityError:
        logger.info(
            "credit_account_create_race",
            extra={"agency_id": auth.agency_id, "client_id": client_id,
                   "operator_id": operator_id, "currency": currency}
        )
        account = await find_account(db, auth.agency_id, client_id, operator_id, currency)
        if account is None:
            raise
        return account, False

    await db.refresh(account, attribute_names=["client", "operator"])
    await log_event(
        db, auth, AuditAction.CREDIT_ACCOUNT_CREATED,
        entity_type="credit_account",
        entity_id=account.id_credit_account,
        metadata={"client_id": client_id, "operator_id": operator_id, "currency": currency},
    )
    logger.info(
        "credit_account_created",
        extra={"agency_id": auth.agency_id, "account_id": account.id_credit_account,
               "agency_account_number": account.agency_credit_account_id}
    )
    return account, True


async def load_account(db: AsyncSession, auth: AuthContext, account_id: int) -> CreditAccount:
    """Account by id, scoped to the caller's agency."""
    account = await db.get(CreditAccount, account_id)
    if account is None:
        raise ResourceNotFoundError("Credit account", account_id)
    ensure_same_agency(auth, account.id_agency, "credit account")
    return account


def ensure_postable(account: CreditAccount, currency: Optional[str] = None) -> None:
    if currency is not None and account.currency != currency:
        raise LedgerValidationError(
            "currency",
            f"Entry currency ({currency}) does not match account currency ({account.currency})"
        )
    if not account.enabled:
        raise LedgerValidationError("account_id", "Credit account is disabled")


async def resolve_account(
    db: AsyncSession,
    auth: AuthContext,
    currency: str,
    account_id: Optional[int] = None,
    client_id: Optional[int] = None,
    operator_id: Optional[int] = None,
    subject_type: Optional[str] = None
) -> CreditAccount:
    """
    Resolve the target account of a posting.

    `account_id` wins when given. Otherwise the subject + currency pair is
    validated and the account is found or created. The result always
    belongs to the caller's agency, matches `currency` and is enabled.
    """
    if account_id is None:
        check_subject_shape(client_id, operator_id, subject_type)
        await check_subject_ownership(db, auth, client_id, operator_id)
        account, _ = await find_or_create_account(db, auth, client_id, operator_id, currency)
    else:
        account = await load_account(db, auth, account_id)

    ensure_postable(account, currency)
    return account


async def create_account(
    db: AsyncSession,
    auth: AuthContext,
    currency: str,
    client_id: Optional[int] = None,
    operator_id: Optional[int] = None,
    enabled: bool = True,
    initial_balance: Any = None
) -> Tuple[CreditAccount, bool]:
    """
    Idempotently create the account for (agency, subject, currency).

    An existing account is returned untouched and `initial_balance` is
    ignored. A new account with a non-zero `initial_balance` receives an
    opening adjustment entry, so its balance is backed by the ledger from
    the start. The caller commits.
    """
    ensure_ledger_access(auth)
    currency = normalize_currency(currency)

    opening = None
    if initial_balance is not None and initial_balance != "":
        opening = parse_decimal_input(initial_balance)
        if opening is None:
            raise LedgerValidationError("initial_balance", "initial_balance must be a valid number")
        opening = to_money(opening)
        if opening is None:
            raise LedgerValidationError("initial_balance", "initial_balance is out of range")

    check_subject_shape(client_id, operator_id)
    await check_subject_ownership(db, auth, client_id, operator_id)

    account, created = await find_or_create_account(
        db, auth, client_id, operator_id, currency, enabled=enabled
    )

    if created and opening:
        # Imported late: entries depends on this module.
        from ofistur.app.domain.credit.entries import post_opening_entry

        await post_opening_entry(db, auth, account, opening)

    return account, created


async def list_accounts(
    db: AsyncSession,
    auth: AuthContext,
    client_id: Optional[int] = None,
    operator_id: Optional[int] = None,
    currency: Optional[str] = None,
    enabled: Optional[bool] = None,
    cursor: Optional[int] = None,
    take: Optional[int] = None
) -> Dict[str, Any]:
    """
    Accounts of the caller's agency, most recently updated first.

    `cursor` is the id of the last account of the previous page.
    """
    ensure_ledger_access(auth)
    take = clamp_take(take, settings.credit_accounts_default_take, settings.credit_accounts_max_take)

    query = select(CreditAccount).where(CreditAccount.id_agency == auth.agency_id)
    if client_id is not None:
        query = query.where(CreditAccount.client_id == client_id)
    if operator_id is not None:
        query = query.where(CreditAccount.operator_id == operator_id)
    if currency:
        query = query.where(CreditAccount.currency == currency.strip().upper())
    if enabled is not None:
        query = query.where(CreditAccount.enabled == enabled)

    if cursor is not None:
        anchor = await db.get(CreditAccount, cursor)
        if anchor is None or anchor.id_agency != auth.agency_id:
            raise LedgerValidationError("cursor", "Invalid cursor")
        query = query.where(
            (CreditAccount.updated_at < anchor.updated_at)
            | (
                (CreditAccount.updated_at == anchor.updated_at)
                & (CreditAccount.id_credit_account < anchor.id_credit_account)
            )
        )

    query = query.order_by(
        desc(CreditAccount.updated_at), desc(CreditAccount.id_credit_account)
    ).limit(take + 1)

    result = await db.execute(query)
    items = list(result.scalars().all())

    has_more = len(items) > take
    items = items[:take]
    next_cursor = items[-1].id_credit_account if has_more else None

    counts = await count_entries(db, [a.id_credit_account for a in items])
    return {"items": items, "entry_counts": counts, "next_cursor": next_cursor}


async def count_entries(db: AsyncSession, account_ids: list[int]) -> Dict[int, int]:
    if not account_ids:
        return {}
    result = await db.execute(
        select(CreditEntry.account_id, func.count(CreditEntry.id_entry))
        .where(CreditEntry.account_id.in_(account_ids))
        .group_by(CreditEntry.account_id)
    )
    counts = {account_id: 0 for account_id in account_ids}
    counts.update({account_id: count for account_id, count in result.all()})
    return counts


async def get_account(
    db: AsyncSession,
    auth: AuthContext,
    account_id: int,
    recent: Optional[int] = None
) -> Dict[str, Any]:
    """Account detail with its most recent entries and total entry count."""
    ensure_ledger_access(auth)
    account = await load_account(db, auth, account_id)

    limit = recent or settings.credit_account_recent_entries
    result = await db.execute(
        select(CreditEntry)
        .where(CreditEntry.account_id == account_id, CreditEntry.id_agency == auth.agency_id)
        .order_by(desc(CreditEntry.created_at), desc(CreditEntry.id_entry))
        .limit(limit)
    )
    recent_entries = list(result.scalars().all())
    counts = await count_entries(db, [account_id])

    return {
        "account": account,
        "recent_entries": recent_entries,
        "entry_count": counts.get(account_id, 0),
    }


async def set_account_enabled(
    db: AsyncSession,
    auth: AuthContext,
    account_id: int,
    enabled: Optional[bool]
) -> CreditAccount:
    """Enable or disable an account. Disabled accounts reject new postings."""
    ensure_ledger_access(auth)
    if enabled is None:
        raise LedgerValidationError("enabled", "Nothing to update")

    account = await load_account(db, auth, account_id)
    if account.enabled != enabled:
        account.enabled = enabled
        await db.flush()
        await log_event(
            db, auth, AuditAction.CREDIT_ACCOUNT_TOGGLED,
            entity_type="credit_account",
            entity_id=account.id_credit_account,
            metadata={"enabled": enabled},
        )
        logger.info(
            "credit_account_toggled",
            extra={"agency_id": auth.agency_id, "account_id": account_id, "enabled": enabled}
        )
    return account
