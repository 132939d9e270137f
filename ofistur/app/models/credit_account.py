"""
Credit account database model.

Running signed balance for one subject (client or operator) in one
currency within one agency.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey,
    CheckConstraint, Index, UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.subjects import Client, Operator
from ofistur.app.models.timestamps import utcnow


class CreditAccount(Base):
    """
    Credit account.

    Exactly one of client_id / operator_id is set. (agency, subject, currency)
    is unique and is the idempotency key for find-or-create.
    `balance` must always equal the signed sum of the account's entries;
    it is only written through the ledger balance helpers.
    """
    __tablename__ = "credit_accounts"

    id_credit_account = Column(Integer, primary_key=True, index=True, autoincrement=True)
    agency_credit_account_id = Column(Integer, nullable=False)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False, index=True)

    # Subject
    client_id = Column(Integer, ForeignKey("clients.id_client", ondelete="CASCADE"), nullable=True, index=True)
    operator_id = Column(Integer, ForeignKey("operators.id_operator", ondelete="CASCADE"), nullable=True, index=True)

    currency = Column(String(10), nullable=False, index=True)
    balance = Column(Numeric(18, 2), nullable=False, default=0, server_default="0")
    enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    client = relationship(Client, lazy="selectin")
    operator = relationship(Operator, lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "(client_id IS NULL) <> (operator_id IS NULL)",
            name="ck_credit_account_single_subject"
        ),
        UniqueConstraint("id_agency", "agency_credit_account_id", name="uq_credit_account_agency_seq"),
        Index(
            "uq_credit_account_client_currency",
            "id_agency", "client_id", "currency",
            unique=True,
            postgresql_where=text("client_id IS NOT NULL"),
            sqlite_where=text("client_id IS NOT NULL"),
        ),
        Index(
            "uq_credit_account_operator_currency",
            "id_agency", "operator_id", "currency",
            unique=True,
            postgresql_where=text("operator_id IS NOT NULL"),
            sqlite_where=text("operator_id IS NOT NULL"),
        ),
        Index("ix_credit_account_agency_updated", "id_agency", "updated_at"),
    )

    @property
    def subject_type(self) -> str:
        return "CLIENT" if self.client_id is not None else "OPERATOR"

    def __repr__(self):
        return (
            f"<CreditAccount(id={self.id_credit_account}, subject={self.subject_type}, "
            f"currency='{self.currency}', balance={self.balance})>"
        )
