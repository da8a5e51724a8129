"""
Pharmacy Model - Pickup locations
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime

from pharmadispatch.db.database import Base


class Pharmacy(Base):
    """A pharmacy whose coordinates serve as the default pickup point"""

    __tablename__ = "pharmacies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False)
    address = Column(String(500), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
