"""
Force-set of an account balance.

The new balance is assigned directly, and the difference is recorded as an
adjust_up / adjust_down entry whose signed effect equals that difference,
so the balance stays equal to the sum of its entries.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ofistur.app.core.auth import AuthContext, ensure_ledger_admin
from ofistur.app.core.config import settings
from ofistur.app.core.exceptions import LedgerValidationError
from ofistur.app.domain.credit.accounts import load_account
from ofistur.app.domain.credit.balance import lock_account, set_balance
from ofistur.app.domain.credit.decimal_input import parse_decimal_input, quantize_money, to_money
from ofistur.app.domain.credit.entries import (
    clean_reference, coerce_value_date, post_adjustment_entry
)
from ofistur.app.services.audit import AuditAction, log_event

logger = logging.getLogger("ofistur.credit")


async def adjust_balance(
    db: AsyncSession,
    auth: AuthContext,
    account_id: int,
    target_balance: Any,
    reason: Optional[str],
    value_date: Any = None,
    reference: Optional[str] = None
) -> Dict[str, Any]:
    """
    Set an account's balance to `target_balance`. Admin tier only.

    `target_balance` may be a number or a locale-formatted string
    ("1.234,56", "1,234.56"). A target equal to the current balance is a
    no-op and returns changed=False with no entry.

    Returns:
        {changed, account, entry, previous_balance, target_balance, delta}
    """
    ensure_ledger_admin(auth, "adjust credit balances")

    parsed = parse_decimal_input(target_balance)
    if parsed is None:
        raise LedgerValidationError("target_balance", "target_balance is not a valid number")
    target = to_money(parsed)
    if target is None:
        raise LedgerValidationError("target_balance", "target_balance is out of range")

    reason = (reason or "").strip()
    if not reason:
        raise LedgerValidationError("reason", "reason is required")
    value_date = coerce_value_date(value_date)

    await load_account(db, auth, account_id)
    account = await lock_account(db, account_id)
    previous = quantize_money(Decimal(account.balance))
    diff = quantize_money(target - previous)
    if to_money(diff) is None:
        raise LedgerValidationError("target_balance", "target_balance is too far from the current balance")

    if diff == 0:
        return {
            "changed": False,
            "account": account,
            "entry": None,
            "previous_balance": previous,
            "target_balance": target,
            "delta": diff,
        }

    entry = await post_adjustment_entry(
        db, auth, account, diff,
        concept=f"{settings.credit_adjust_concept_prefix}{reason}",
        value_date=value_date,
        reference=clean_reference(reference) or settings.credit_adjust_reference,
    )
    account = await set_balance(db, account_id, target)

    await log_event(
        db, auth, AuditAction.CREDIT_BALANCE_ADJUSTED,
        entity_type="credit_account",
        entity_id=account_id,
        metadata={
            "entry_id": entry.id_entry,
            "previous_balance": previous,
            "target_balance": target,
            "delta": diff,
            "reason": reason,
        },
    )
    logger.info(
        "credit_balance_adjusted",
        extra={
            "agency_id": auth.agency_id,
            "account_id": account_id,
            "entry_id": entry.id_entry,
            "previous": str(previous),
            "target": str(target),
            "delta": str(diff),
        }
    )

    return {
        "changed": True,
        "account": account,
        "entry": entry,
        "previous_balance": previous,
        "target_balance": target,
        "delta": diff,
    }
