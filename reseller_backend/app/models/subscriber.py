"""
Subscriber database model.

A subscriber is a leaf device owned by a reseller.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, JSON
from sqlalchemy.sql import func
from reseller_backend.app.db.session import Base
from reseller_backend.app.models.enums import SubscriberStatus


class Subscriber(Base):
    """
    Subscriber model.
    
    Lifecycle: Fresh -> Active (paid activation) -> Inactive (expiry or cascade).
    A released subscriber goes back to Fresh with no reseller.
    """
    __tablename__ = "subscribers"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # Owner (NULL once released)
    reseller_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    
    name = Column(String(100), nullable=False)
    serial_number = Column(String(100), nullable=False)
    mac_address = Column(String(50), unique=True, index=True, nullable=False)
    
    status = Column(Enum(SubscriberStatus), default=SubscriberStatus.FRESH, nullable=False, index=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    
    # Package references (catalog ids)
    package_ids = Column(JSON, default=list, nullable=False)
    primary_package_id = Column(Integer, nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Subscriber(id={self.id}, mac='{self.mac_address}', status='{self.status.value}')>"
