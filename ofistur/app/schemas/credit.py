"""
Credit ledger schemas.

Request bodies are deliberately loose (optional fields, raw strings for
numbers typed by users); the ledger operations validate them and report
the offending field.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Union


class ClientSummary(BaseModel):
    id_client: int
    first_name: str
    last_name: str

    class Config:
        from_attributes = True


class OperatorSummary(BaseModel):
    id_operator: int
    name: str

    class Config:
        from_attributes = True


class CreditAccountCreate(BaseModel):
    """Schema for creating (or fetching) the account of a subject in a currency."""
    client_id: Optional[int] = None
    operator_id: Optional[int] = None
    currency: Optional[str] = None
    enabled: bool = True
    initial_balance: Optional[Union[Decimal, str]] = None


class CreditAccountUpdate(BaseModel):
    enabled: Optional[bool] = None


class CreditAccountResponse(BaseModel):
    id_credit_account: int
    agency_credit_account_id: int
    id_agency: int
    client_id: Optional[int]
    operator_id: Optional[int]
    subject_type: str  # CLIENT | OPERATOR
    currency: str
    balance: Decimal
    enabled: bool
    created_at: datetime
    updated_at: datetime
    client: Optional[ClientSummary] = None
    operator: Optional[OperatorSummary] = None

    class Config:
        from_attributes = True


class CreditAccountListItem(CreditAccountResponse):
    entry_count: int = 0


class CreditAccountPage(BaseModel):
    items: List[CreditAccountListItem]
    next_cursor: Optional[int] = None


class BalanceAdjustRequest(BaseModel):
    """Target balance as a number or a locale-formatted string ("1.234,56")."""
    target_balance: Union[Decimal, str]
    reason: Optional[str] = None
    value_date: Optional[str] = None
    reference: Optional[str] = None


class CreditEntryCreate(BaseModel):
    """
    Schema for posting a movement.

    Target either `account_id`, or a subject (client_id / operator_id) plus
    `currency`. `amount` is always positive; `doc_type` decides the sign.
    """
    account_id: Optional[int] = None
    subject_type: Optional[str] = None
    client_id: Optional[int] = None
    operator_id: Optional[int] = None
    currency: Optional[str] = None

    amount: Optional[Decimal] = None
    concept: Optional[str] = None
    doc_type: Optional[str] = None
    value_date: Optional[str] = None
    reference: Optional[str] = Field(None, max_length=255)

    booking_id: Optional[int] = None
    receipt_id: Optional[int] = None
    investment_id: Optional[int] = None
    operator_due_id: Optional[int] = None


class CreditEntryUpdate(BaseModel):
    """Only fields present in the body are changed; null clears value_date, doc_type and reference."""
    concept: Optional[str] = None
    value_date: Optional[str] = None
    doc_type: Optional[str] = None
    reference: Optional[str] = Field(None, max_length=255)


class CreditEntryResponse(BaseModel):
    id_entry: int
    agency_credit_entry_id: int
    id_agency: int
    account_id: int
    amount: Decimal
    currency: str
    doc_type: Optional[str]
    concept: str
    value_date: Optional[date]
    reference: Optional[str]
    booking_id: Optional[int]
    receipt_id: Optional[int]
    investment_id: Optional[int]
    operator_due_id: Optional[int]
    created_by: Optional[int]
    created_at: datetime
    account: Optional[CreditAccountResponse] = None

    class Config:
        from_attributes = True


class CreditEntryPage(BaseModel):
    items: List[CreditEntryResponse]
    next_cursor: Optional[int] = None


class CreditAccountDetailResponse(CreditAccountResponse):
    entry_count: int
    recent_entries: List[CreditEntryResponse]


class CreditEntryDeleteResponse(BaseModel):
    message: str
    deleted: CreditEntryResponse


class BalanceAdjustResponse(BaseModel):
    changed: bool
    account: CreditAccountResponse
    entry: Optional[CreditEntryResponse] = None
    previous_balance: Decimal
    target_balance: Decimal
    delta: Decimal


class ReconciliationResponse(BaseModel):
    account_id: int
    stored_balance: Decimal
    computed_balance: Decimal
    drift: Decimal
    entry_count: int
    consistent: bool
