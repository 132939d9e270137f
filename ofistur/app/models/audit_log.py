"""
Audit Log Database Model.

Tracks administrative ledger actions for compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.timestamps import utcnow


class AuditLog(Base):
    """
    Audit log model for ledger actions.

    Events logged:
    - CREDIT_ACCOUNT_CREATED / CREDIT_ACCOUNT_TOGGLED
    - CREDIT_ENTRY_UPDATED (with balance correction, if any)
    - CREDIT_ENTRY_DELETED (snapshot of the removed row)
    - CREDIT_BALANCE_ADJUSTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    id_agency = Column(Integer, index=True, nullable=False)
    actor_id = Column(Integer, index=True, nullable=True)

    action = Column(String(100), nullable=False, index=True)

    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
