"""
Credit entry posting, reclassification and deletion.

Every operation here that moves a balance computes the delta from the
entry's absolute amount and its doc_type, then applies it through the
locked balance helpers in the caller's transaction. None of them commit.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.core.auth import (
    AuthContext, ensure_ledger_access, ensure_ledger_admin, ensure_same_agency
)
from ofistur.app.core.config import settings
from ofistur.app.core.exceptions import (
    LedgerConflictError, LedgerValidationError, ResourceNotFoundError
)
from ofistur.app.domain.credit import accounts
from ofistur.app.domain.credit.balance import apply_balance_delta, lock_account
from ofistur.app.domain.credit.decimal_input import parse_value_date, quantize_money, to_money
from ofistur.app.domain.credit.sign_policy import (
    DocType, is_adjustment, normalize, normalize_doc_type, sign_for_doc_type, signed_delta
)
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.credit_entry import CreditEntry
from ofistur.app.services import agency_counters
from ofistur.app.services.audit import AuditAction, log_event

logger = logging.getLogger("ofistur.credit")

# Unset marker for partial updates, where None means "clear".
UNSET: Any = object()

ALWAYS_BLOCKING_LINKS = ("receipt_id", "operator_due_id", "booking_id")


def validate_amount(raw: Any) -> Decimal:
    """A positive, finite magnitude rounded to cents."""
    if raw is None or isinstance(raw, bool):
        raise LedgerValidationError("amount", "amount is required and must be > 0")
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (ArithmeticError, ValueError):
        raise LedgerValidationError("amount", "amount must be a number") from None
    if not amount.is_finite():
        raise LedgerValidationError("amount", "amount must be a finite number")
    amount = to_money(amount)
    if amount is None:
        raise LedgerValidationError("amount", "amount is out of range")
    if amount <= 0:
        raise LedgerValidationError("amount", "amount is required and must be > 0")
    return amount


def validate_concept(raw: Optional[str]) -> str:
    concept = (raw or "").strip()
    if not concept:
        raise LedgerValidationError("concept", "concept is required")
    return concept


def coerce_value_date(raw: Any) -> Optional[date]:
    if raw is None or raw == "":
        return None
    value = parse_value_date(raw)
    if value is None:
        raise LedgerValidationError("value_date", "value_date is not a valid date")
    return value


def clean_reference(raw: Optional[str]) -> Optional[str]:
    reference = (raw or "").strip()
    return reference or None


def check_negative_balance(account: CreditAccount, new_balance: Decimal, doc_type: Optional[str]) -> None:
    """
    Optional policy: client balances may not go below zero, except through
    explicit adjustments.
    """
    if not settings.credit_block_negative_balance:
        return
    if account.client_id is None or is_adjustment(doc_type):
        return
    if new_balance < 0:
        raise LedgerConflictError(
            "Insufficient balance: the operation would leave the client account negative",
            details={
                "account_id": account.id_credit_account,
                "balance": str(account.balance),
                "resulting_balance": str(new_balance),
            }
        )


async def _insert_entry(
    db: AsyncSession,
    auth: AuthContext,
    account: CreditAccount,
    amount: Decimal,
    doc_type: Optional[str],
    concept: str,
    value_date: Optional[date] = None,
    reference: Optional[str] = None,
    links: Optional[Dict[str, Optional[int]]] = None,
    check_policy: bool = True
) -> CreditEntry:
    """
    Write one entry and move the balance by its signed effect.

    With `check_policy`, the locked row must still be enabled and the
    negative-balance policy applies. Adjustments skip both.
    """
    locked = await lock_account(db, account.id_credit_account)
    delta = signed_delta(amount, doc_type)
    if check_policy:
        accounts.ensure_postable(locked)
        check_negative_balance(locked, Decimal(locked.balance) + delta, doc_type)

    number = await agency_counters.get_next_agency_counter(
        db, auth.agency_id, agency_counters.CREDIT_ENTRY
    )
    entry = CreditEntry(
        id_agency=auth.agency_id,
        agency_credit_entry_id=number,
        account=locked,
        amount=amount,
        currency=locked.currency,
        doc_type=doc_type,
        concept=concept,
        value_date=value_date,
        reference=reference,
        created_by=auth.actor_id,
        **(links or {}),
    )
    db.add(entry)
    await db.flush()

    locked = await apply_balance_delta(db, locked.id_credit_account, delta)

    logger.info(
        "credit_entry_posted",
        extra={
            "agency_id": auth.agency_id,
            "account_id": locked.id_credit_account,
            "entry_id": entry.id_entry,
            "doc_type": doc_type,
            "delta": str(delta),
            "balance": str(locked.balance),
        }
    )
    return entry


async def post_entry(
    db: AsyncSession,
    auth: AuthContext,
    amount: Any,
    currency: Optional[str],
    concept: Optional[str],
    doc_type: Optional[str] = None,
    account_id: Optional[int] = None,
    client_id: Optional[int] = None,
    operator_id: Optional[int] = None,
    subject_type: Optional[str] = None,
    value_date: Any = None,
    reference: Optional[str] = None,
    booking_id: Optional[int] = None,
    receipt_id: Optional[int] = None,
    investment_id: Optional[int] = None,
    operator_due_id: Optional[int] = None
) -> CreditEntry:
    """
    Post a movement against an account.

    The target is `account_id`, or the (subject, currency) account, which is
    created on first use. `amount` is always a positive magnitude; its
    direction comes from `doc_type` (default "manual", sign +1).

    Raises:
        InsufficientPermissionsError: No ledger access, or the account or
            subject belongs to another agency
        LedgerValidationError: Bad amount, currency, concept, subject or
            value_date; currency mismatch; disabled account
        ResourceNotFoundError: Unknown account or subject
        LedgerConflictError: Negative-balance policy rejected the posting
    """
    ensure_ledger_access(auth)

    amount = validate_amount(amount)
    currency = accounts.normalize_currency(currency)
    concept = validate_concept(concept)
    doc_type = normalize_doc_type(doc_type, settings.credit_strict_doc_types)
    value_date = coerce_value_date(value_date)

    account = await accounts.resolve_account(
        db, auth, currency,
        account_id=account_id,
        client_id=client_id,
        operator_id=operator_id,
        subject_type=subject_type,
    )

    return await _insert_entry(
        db, auth, account, amount, doc_type, concept,
        value_date=value_date,
        reference=clean_reference(reference),
        links={
            "booking_id": booking_id,
            "receipt_id": receipt_id,
            "investment_id": investment_id,
            "operator_due_id": operator_due_id,
        },
    )


async def post_adjustment_entry(
    db: AsyncSession,
    auth: AuthContext,
    account: CreditAccount,
    diff: Decimal,
    concept: str,
    value_date: Optional[date] = None,
    reference: Optional[str] = None
) -> CreditEntry:
    """Record `diff` as an adjust_up / adjust_down entry of abs(diff)."""
    doc_type = DocType.ADJUST_UP.value if diff >= 0 else DocType.ADJUST_DOWN.value
    return await _insert_entry(
        db, auth, account, quantize_money(abs(diff)), doc_type, concept,
        value_date=value_date,
        reference=reference,
        check_policy=False,
    )


async def post_opening_entry(
    db: AsyncSession,
    auth: AuthContext,
    account: CreditAccount,
    initial_balance: Decimal
) -> CreditEntry:
    return await post_adjustment_entry(
        db, auth, account, quantize_money(initial_balance), settings.credit_opening_concept
    )


async def load_entry(db: AsyncSession, auth: AuthContext, entry_id: int) -> CreditEntry:
    entry = await db.get(CreditEntry, entry_id)
    if entry is None:
        raise ResourceNotFoundError("Credit entry", entry_id)
    ensure_same_agency(auth, entry.id_agency, "credit entry")
    return entry


async def lock_entry(
    db: AsyncSession,
    auth: AuthContext,
    entry_id: int
) -> Tuple[CreditEntry, CreditAccount]:
    """
    Lock an entry's account, then re-read the entry under that lock.

    Edits and deletes compute their balance effect from the returned row
    only. Any copy loaded earlier in the session may predate a concurrent
    reclassification or deletion.
    """
    entry = await load_entry(db, auth, entry_id)
    locked = await lock_account(db, entry.account_id)

    result = await db.execute(
        select(CreditEntry)
        .where(CreditEntry.id_entry == entry_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        raise ResourceNotFoundError("Credit entry", entry_id)
    return entry, locked


async def get_entry(db: AsyncSession, auth: AuthContext, entry_id: int) -> CreditEntry:
    ensure_ledger_access(auth)
    return await load_entry(db, auth, entry_id)


async def list_entries(
    db: AsyncSession,
    auth: AuthContext,
    account_id: Optional[int] = None,
    client_id: Optional[int] = None,
    operator_id: Optional[int] = None,
    subject_type: Optional[str] = None,
    currency: Optional[str] = None,
    doc_type: Optional[str] = None,
    investment_id: Optional[int] = None,
    cursor: Optional[int] = None,
    take: Optional[int] = None
) -> Dict[str, Any]:
    """
    Entries of the caller's agency, newest first.

    Subject filters apply to the owning account. `cursor` is the id of the
    last entry of the previous page.
    """
    ensure_ledger_access(auth)
    take = accounts.clamp_take(take, settings.credit_entries_default_take, settings.credit_entries_max_take)

    query = select(CreditEntry).where(CreditEntry.id_agency == auth.agency_id)
    if account_id is not None:
        query = query.where(CreditEntry.account_id == account_id)
    if doc_type:
        query = query.where(CreditEntry.doc_type == normalize(doc_type))
    if currency:
        query = query.where(CreditEntry.currency == currency.strip().upper())
    if investment_id is not None:
        query = query.where(CreditEntry.investment_id == investment_id)

    legacy = (subject_type or "").strip().upper()
    if client_id is not None or operator_id is not None or legacy:
        query = query.join(CreditAccount, CreditEntry.account_id == CreditAccount.id_credit_account)
        if client_id is not None:
            query = query.where(CreditAccount.client_id == client_id)
        if operator_id is not None:
            query = query.where(CreditAccount.operator_id == operator_id)
        if legacy == accounts.SUBJECT_CLIENT:
            query = query.where(CreditAccount.client_id.is_not(None))
        elif legacy == accounts.SUBJECT_OPERATOR:
            query = query.where(CreditAccount.operator_id.is_not(None))

    if cursor is not None:
        anchor = await db.get(CreditEntry, cursor)
        if anchor is None or anchor.id_agency != auth.agency_id:
            raise LedgerValidationError("cursor", "Invalid cursor")
        query = query.where(
            (CreditEntry.created_at < anchor.created_at)
            | (
                (CreditEntry.created_at == anchor.created_at)
                & (CreditEntry.id_entry < anchor.id_entry)
            )
        )

    query = query.order_by(desc(CreditEntry.created_at), desc(CreditEntry.id_entry)).limit(take + 1)

    result = await db.execute(query)
    items = list(result.scalars().all())

    has_more = len(items) > take
    items = items[:take]
    return {"items": items, "next_cursor": items[-1].id_entry if has_more else None}


async def update_entry(
    db: AsyncSession,
    auth: AuthContext,
    entry_id: int,
    concept: Any = UNSET,
    value_date: Any = UNSET,
    doc_type: Any = UNSET,
    reference: Any = UNSET
) -> CreditEntry:
    """
    Edit an entry's metadata. Admin tier only.

    Only supplied fields change. A doc_type change that flips the sign moves
    the balance by amount * (new_sign - old_sign); one that keeps the sign
    leaves the balance alone.
    """
    ensure_ledger_admin(auth, "edit credit entries")
    entry, locked = await lock_entry(db, auth, entry_id)

    changes: Dict[str, Any] = {}
    if concept is not UNSET and concept is not None:
        changes["concept"] = validate_concept(concept)
    if value_date is not UNSET:
        changes["value_date"] = coerce_value_date(value_date)
    if doc_type is not UNSET:
        changes["doc_type"] = normalize_doc_type(doc_type, settings.credit_strict_doc_types, default=None)
    if reference is not UNSET:
        changes["reference"] = clean_reference(reference)

    if not changes:
        raise LedgerValidationError("body", "No fields to update")

    previous_doc_type = entry.doc_type
    diff = Decimal("0")
    if "doc_type" in changes and normalize(changes["doc_type"]) != normalize(previous_doc_type):
        old_sign = sign_for_doc_type(previous_doc_type)
        new_sign = sign_for_doc_type(changes["doc_type"])
        if old_sign != new_sign:
            amount = Decimal(entry.amount)
            diff = amount * new_sign - amount * old_sign

    if diff:
        check_negative_balance(locked, Decimal(locked.balance) + diff, changes["doc_type"])
        locked = await apply_balance_delta(db, entry.account_id, diff)
        logger.info(
            "credit_entry_reclassified",
            extra={
                "agency_id": auth.agency_id,
                "account_id": entry.account_id,
                "entry_id": entry.id_entry,
                "from_doc_type": previous_doc_type,
                "to_doc_type": changes["doc_type"],
                "delta": str(diff),
                "balance": str(locked.balance),
            }
        )

    for field, value in changes.items():
        setattr(entry, field, value)
    await db.flush()

    await log_event(
        db, auth, AuditAction.CREDIT_ENTRY_UPDATED,
        entity_type="credit_entry",
        entity_id=entry.id_entry,
        metadata={"changes": changes, "previous_doc_type": previous_doc_type, "balance_delta": diff},
    )
    return entry


async def delete_entry(
    db: AsyncSession,
    auth: AuthContext,
    entry_id: int,
    allow_linked: bool = False
) -> CreditEntry:
    """
    Delete an unlinked entry, reversing its current signed effect first.

    Entries linked to a receipt, operator due or booking can never be
    deleted here; investment-linked entries only with `allow_linked`.
    Returns the deleted (now transient) entry.
    """
    ensure_ledger_admin(auth, "delete credit entries")
    entry, _ = await lock_entry(db, auth, entry_id)

    blocking = [name for name in ALWAYS_BLOCKING_LINKS if getattr(entry, name) is not None]
    if entry.investment_id is not None and not allow_linked:
        blocking.append("investment_id")
    if blocking:
        raise LedgerConflictError(
            "Cannot delete: the entry is linked to another document. "
            "Reverse it from the originating flow or post a contra-entry.",
            details={"links": blocking}
        )

    delta = signed_delta(entry.amount, entry.doc_type)
    locked = await apply_balance_delta(db, entry.account_id, -delta)

    snapshot = {
        "account_id": entry.account_id,
        "agency_credit_entry_id": entry.agency_credit_entry_id,
        "amount": entry.amount,
        "doc_type": entry.doc_type,
        "concept": entry.concept,
        "links": entry.linked_documents,
    }
    await db.delete(entry)
    await db.flush()

    await log_event(
        db, auth, AuditAction.CREDIT_ENTRY_DELETED,
        entity_type="credit_entry",
        entity_id=entry_id,
        metadata=snapshot,
    )
    logger.info(
        "credit_entry_deleted",
        extra={
            "agency_id": auth.agency_id,
            "account_id": locked.id_credit_account,
            "entry_id": entry_id,
            "delta": str(-delta),
            "balance": str(locked.balance),
        }
    )
    return entry
