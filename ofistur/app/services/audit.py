"""
Audit logging service for ledger actions.

Audit rows are added to the caller's session and committed together with
the ledger change they describe.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from ofistur.app.core.auth import AuthContext
from ofistur.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    CREDIT_ACCOUNT_CREATED = "CREDIT_ACCOUNT_CREATED"
    CREDIT_ACCOUNT_TOGGLED = "CREDIT_ACCOUNT_TOGGLED"
    CREDIT_ENTRY_UPDATED = "CREDIT_ENTRY_UPDATED"
    CREDIT_ENTRY_DELETED = "CREDIT_ENTRY_DELETED"
    CREDIT_BALANCE_ADJUSTED = "CREDIT_BALANCE_ADJUSTED"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


async def log_event(
    db: AsyncSession,
    auth: AuthContext,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Record a ledger event in the current transaction.

    Args:
        db: Database session (the caller commits)
        auth: Acting user and agency
        action: Action being performed (use AuditAction constants)
        entity_type: "credit_account" or "credit_entry"
        entity_id: Primary key of the affected row
        metadata: Additional context; Decimals and dates are stringified

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        id_agency=auth.agency_id,
        actor_id=auth.actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=_jsonable(metadata) if metadata else None
    )
    db.add(audit_log)
    await db.flush()
    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    agency_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve an agency's audit trail, most recent first.
    """
    query = select(AuditLog).where(AuditLog.id_agency == agency_id)

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)
    if action:
        query = query.where(AuditLog.action == action)

    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
