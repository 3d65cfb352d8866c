"""
Capping settings database model.

Single row holding the minimum balance floors per tier.
"""

from sqlalchemy import Column, Integer, Numeric, DateTime
from sqlalchemy.sql import func
from reseller_backend.app.db.session import Base


class CappingSettings(Base):
    """
    Capping settings model.
    
    Only one row is ever stored. When the table is empty the configured
    defaults apply; reading never creates the row.
    """
    __tablename__ = "capping_settings"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    distributor_floor = Column(Numeric(14, 2), nullable=False)
    reseller_floor = Column(Numeric(14, 2), nullable=False)
    
    updated_by_admin_id = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<CappingSettings(distributor={self.distributor_floor}, reseller={self.reseller_floor})>"
