"""
Package database model.

Minimal catalog record; the ledger only reads cost and duration.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.sql import func
from reseller_backend.app.db.session import Base


class Package(Base):
    __tablename__ = "packages"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    cost = Column(Numeric(14, 2), nullable=False)
    duration_days = Column(Integer, nullable=False, default=30)  # 1 month = 30 days
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Package(id={self.id}, name='{self.name}', cost={self.cost})>"
