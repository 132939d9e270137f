"""
Credit Account API Endpoints.

Accounts hold the running balance of one client or operator in one
currency. They are created on first posting or explicitly here, and are
never deleted.
"""

from fastapi import APIRouter, Depends, Path, Query, Body, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ofistur.app.db.session import get_db, unit_of_work
from ofistur.app.core.auth import AuthContext
from ofistur.app.core.guards import require_ledger_access, require_ledger_admin
from ofistur.app.domain.credit import accounts
from ofistur.app.domain.credit.adjustments import adjust_balance
from ofistur.app.domain.credit.reconciliation import reconcile_account
from ofistur.app.schemas.credit import (
    CreditAccountCreate, CreditAccountUpdate, CreditAccountResponse,
    CreditAccountListItem, CreditAccountPage, CreditAccountDetailResponse,
    CreditEntryResponse, BalanceAdjustRequest, BalanceAdjustResponse,
    ReconciliationResponse
)

router = APIRouter(prefix="/credit/accounts", tags=["Credit - Accounts"])


@router.get("", response_model=CreditAccountPage)
async def list_credit_accounts(
    client_id: Optional[int] = Query(None),
    operator_id: Optional[int] = Query(None),
    currency: Optional[str] = Query(None),
    enabled: Optional[bool] = Query(None),
    cursor: Optional[int] = Query(None, description="Id of the last account of the previous page"),
    take: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    List the agency's credit accounts, most recently updated first.
    """
    page = await accounts.list_accounts(
        db, auth,
        client_id=client_id,
        operator_id=operator_id,
        currency=currency,
        enabled=enabled,
        cursor=cursor,
        take=take,
    )

    items = [
        CreditAccountListItem(
            **CreditAccountResponse.model_validate(account).model_dump(),
            entry_count=page["entry_counts"].get(account.id_credit_account, 0),
        )
        for account in page["items"]
    ]
    return CreditAccountPage(items=items, next_cursor=page["next_cursor"])


@router.post("", response_model=CreditAccountResponse)
async def create_credit_account(
    response: Response,
    payload: CreditAccountCreate = Body(...),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Create the account for a subject and currency (idempotent).

    Returns:
    - 201 with the new account
    - 200 with the existing account; initial_balance is then ignored
    """
    async with unit_of_work(db):
        account, created = await accounts.create_account(
            db, auth,
            currency=payload.currency,
            client_id=payload.client_id,
            operator_id=payload.operator_id,
            enabled=payload.enabled,
            initial_balance=payload.initial_balance,
        )

    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return CreditAccountResponse.model_validate(account)


@router.get("/{account_id}", response_model=CreditAccountDetailResponse)
async def get_credit_account(
    account_id: int = Path(..., description="Credit account ID"),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Account detail with its latest entries.
    """
    detail = await accounts.get_account(db, auth, account_id)

    return CreditAccountDetailResponse(
        **CreditAccountResponse.model_validate(detail["account"]).model_dump(),
        entry_count=detail["entry_count"],
        recent_entries=[CreditEntryResponse.model_validate(e) for e in detail["recent_entries"]],
    )


@router.patch("/{account_id}", response_model=CreditAccountResponse)
async def update_credit_account(
    account_id: int = Path(..., description="Credit account ID"),
    payload: CreditAccountUpdate = Body(...),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Enable or disable an account.
    """
    async with unit_of_work(db):
        account = await accounts.set_account_enabled(db, auth, account_id, payload.enabled)

    return CreditAccountResponse.model_validate(account)


@router.post("/{account_id}/adjust", response_model=BalanceAdjustResponse)
async def adjust_credit_account_balance(
    account_id: int = Path(..., description="Credit account ID"),
    payload: BalanceAdjustRequest = Body(...),
    auth: AuthContext = Depends(require_ledger_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Force the account balance to a target value (admin tier).

    The difference is recorded as an adjust_up / adjust_down entry.
    A target equal to the current balance changes nothing.
    """
    async with unit_of_work(db):
        result = await adjust_balance(
            db, auth, account_id,
            target_balance=payload.target_balance,
            reason=payload.reason,
            value_date=payload.value_date,
            reference=payload.reference,
        )

    return BalanceAdjustResponse(
        changed=result["changed"],
        account=CreditAccountResponse.model_validate(result["account"]),
        entry=CreditEntryResponse.model_validate(result["entry"]) if result["entry"] else None,
        previous_balance=result["previous_balance"],
        target_balance=result["target_balance"],
        delta=result["delta"],
    )


@router.get("/{account_id}/reconciliation", response_model=ReconciliationResponse)
async def reconcile_credit_account(
    account_id: int = Path(..., description="Credit account ID"),
    auth: AuthContext = Depends(require_ledger_access),
    db: AsyncSession = Depends(get_db)
):
    """
    Compare the stored balance with the sum of the account's entries.
    """
    return ReconciliationResponse(**await reconcile_account(db, auth, account_id))
