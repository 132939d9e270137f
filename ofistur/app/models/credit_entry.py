"""
Credit entry database model.

A single movement against a credit account. `amount` is stored as an
absolute value; the direction comes from `doc_type` via the sign policy.
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Date, Numeric, ForeignKey,
    CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.credit_account import CreditAccount
from ofistur.app.models.user import User
from ofistur.app.models.timestamps import utcnow


class CreditEntry(Base):
    """
    Credit entry.

    Mutable after creation: concept, value_date, doc_type, reference.
    Linked entries (booking/receipt/investment/operator due) are owned by the
    document that created them and are guarded against deletion.
    """
    __tablename__ = "credit_entries"

    id_entry = Column(Integer, primary_key=True, index=True, autoincrement=True)
    agency_credit_entry_id = Column(Integer, nullable=False)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False)
    account_id = Column(
        Integer,
        ForeignKey("credit_accounts.id_credit_account", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(10), nullable=False)
    doc_type = Column(String(50), nullable=True)
    concept = Column(Text, nullable=False)
    value_date = Column(Date, nullable=True)
    reference = Column(String(255), nullable=True)

    # Links to the documents that produced the movement (ids owned elsewhere)
    booking_id = Column(Integer, nullable=True, index=True)
    receipt_id = Column(Integer, nullable=True, index=True)
    investment_id = Column(Integer, nullable=True, index=True)
    operator_due_id = Column(Integer, nullable=True, index=True)

    created_by = Column(Integer, ForeignKey("users.id_user", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    account = relationship(CreditAccount, lazy="selectin")
    created_by_user = relationship(User, lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_credit_entry_amount_abs"),
        UniqueConstraint("id_agency", "agency_credit_entry_id", name="uq_credit_entry_agency_seq"),
        Index("ix_credit_entry_agency_created", "id_agency", "created_at"),
    )

    @property
    def linked_documents(self) -> dict:
        links = {
            "booking_id": self.booking_id,
            "receipt_id": self.receipt_id,
            "investment_id": self.investment_id,
            "operator_due_id": self.operator_due_id,
        }
        return {k: v for k, v in links.items() if v is not None}

    def __repr__(self):
        return (
            f"<CreditEntry(id={self.id_entry}, account={self.account_id}, "
            f"doc_type='{self.doc_type}', amount={self.amount})>"
        )
