"""
User database model.

Agency staff. The ledger only reads users to resolve the caller and to
show who created an entry.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from ofistur.app.db.session import Base
from ofistur.app.models.enums import UserRole
from ofistur.app.models.timestamps import utcnow


class User(Base):
    """Agency user."""
    __tablename__ = "users"

    id_user = Column(Integer, primary_key=True, index=True, autoincrement=True)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.SELLER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id_user}, email='{self.email}', role='{self.role.value}')>"
