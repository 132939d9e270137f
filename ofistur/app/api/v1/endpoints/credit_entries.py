"""
Credit Entry API Endpoints.

Posting, listing, reclassification and deletion of ledger movements.
Edit and delete are restricted to the agency's admin tier.
"""

from fastapi import APIRouter, Depends, Path, Query, Body, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ofistur.app.db.session import get_db, unit_of_work
from ofistur.app.core.auth import AuthContext
from ofistur.app.core.guards import require_ledger_access, require_ledger_admin
from ofistur.app.domain.credit import entries
from ofistur.app.schemas.credit import (
    CreditEntryCreate, CreditEntryUpdate, CreditEntryResponse,
    CreditEntryPage, CreditEntryDeleteResponse
)

router = APIRouter(prefix="/credit/entries", tags=["Credit - Entries"])


@router.get("", response_model=CreditEntryPage)
async def list_credit_entries(
    account_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    operator_id: Optional[int] = Query(None),
    subject_type: Optional[str] = Query(None, description="CLIENT or OPERATOR"),
    currency: Optional[str] = Query(None),
    doc_type: Optional[str] = Query(None),
    investment_id: Optional[int] = Query(None),
    cursor: Optional[int] = Query(None, description="Id of the last entry of the previous page"),
    take: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    List the agency's entries, newest first.
    """
    page = await entries.list_entries(
        db, auth,
        account_id=account_id,
        client_id=client_id,
        operator_id=operator_id,
        subject_type=subject_type,
        currency=currency,
        doc_type=doc_type,
        investment_id=investment_id,
        cursor=cursor,
        take=take,
    )
    return CreditEntryPage(
        items=[CreditEntryResponse.model_validate(e) for e in page["items"]],
        next_cursor=page["next_cursor"],
    )


@router.post("", response_model=CreditEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_credit_entry(
    payload: CreditEntryCreate = Body(...),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Post a movement.

    Validates:
    - amount > 0 (sign comes from doc_type)
    - currency matches the account
    - account enabled and owned by the caller's agency

    The account for (subject, currency) is created on first use.
    """
    async with unit_of_work(db):
        entry = await entries.post_entry(db, auth, **payload.model_dump())

    return CreditEntryResponse.model_validate(entry)


@router.get("/{entry_id}", response_model=CreditEntryResponse)
async def get_credit_entry(
    entry_id: int = Path(..., description="Credit entry ID"),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    entry = await entries.get_entry(db, auth, entry_id)
    return CreditEntryResponse.model_validate(entry)


@router.patch("/{entry_id}", response_model=CreditEntryResponse)
async def update_credit_entry(
    entry_id: int = Path(..., description="Credit entry ID"),
    payload: CreditEntryUpdate = Body(...),
    auth: AuthContext = Depends(require_ledger_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit concept, value_date, doc_type or reference (admin tier).

    A doc_type change that flips the entry's sign corrects the account
    balance in the same transaction.
    """
    async with unit_of_work(db):
        entry = await entries.update_entry(
            db, auth, entry_id, **payload.model_dump(exclude_unset=True)
        )

    return CreditEntryResponse.model_validate(entry)


@router.delete("/{entry_id}", response_model=CreditEntryDeleteResponse)
async def delete_credit_entry(
    entry_id: int = Path(..., description="Credit entry ID"),
    allow_linked: bool = Query(False, description="Allow deleting investment-linked entries"),
    auth: AuthContext = Depends(require_ledger_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete an unlinked entry, reversing its effect on the balance (admin tier).

    Returns 409 for entries linked to a receipt, operator due or booking,
    and for investment-linked entries unless allow_linked=true.
    """
    async with unit_of_work(db):
        deleted = await entries.delete_entry(db, auth, entry_id, allow_linked=allow_linked)

    return CreditEntryDeleteResponse(
        message="Credit entry deleted",
        deleted=CreditEntryResponse.model_validate(deleted),
    )
