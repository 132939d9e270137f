"""
Agency (tenant) database model.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.timestamps import utcnow


class Agency(Base):
    """Travel agency. Every ledger row is scoped to exactly one agency."""
    __tablename__ = "agencies"

    id_agency = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Agency(id={self.id_agency}, name='{self.name}')>"
