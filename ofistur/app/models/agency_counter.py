"""
Per-agency counters backing human-facing sequence numbers.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.timestamps import utcnow


class AgencyCounter(Base):
    """
    One row per (agency, key). `next_value` is the number the next
    allocation hands out. Rows are locked while allocating.
    """
    __tablename__ = "agency_counters"

    id_counter = Column(Integer, primary_key=True, autoincrement=True)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False)
    key = Column(String(50), nullable=False)
    next_value = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("id_agency", "key", name="uq_agency_counter_key"),
    )

    def __repr__(self):
        return f"<AgencyCounter(agency={self.id_agency}, key='{self.key}', next={self.next_value})>"
