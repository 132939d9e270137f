"""
Ledger subjects: the clients and operators a credit account tracks.

Both tables are owned by other back-office areas; only the columns the
ledger needs for tenancy checks and display are mapped here.
"""

from sqlalchemy import Column, Integer, String, ForeignKey
from ofistur.app.db.session import Base


class Client(Base):
    """Agency client (passenger)."""
    __tablename__ = "clients"

    id_client = Column(Integer, primary_key=True, index=True, autoincrement=True)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)

    def __repr__(self):
        return f"<Client(id={self.id_client}, name='{self.first_name} {self.last_name}')>"


class Operator(Base):
    """Tour operator / supplier."""
    __tablename__ = "operators"

    id_operator = Column(Integer, primary_key=True, index=True, autoincrement=True)
    id_agency = Column(Integer, ForeignKey("agencies.id_agency", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)

    def __repr__(self):
        return f"<Operator(id={self.id_operator}, name='{self.name}')>"
