"""
Courier Model - Dispatchable agents
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, Enum as SQLEnum

from pharmadispatch.db.database import Base


class CourierStatus(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"
    SUSPENDED = "suspended"
    PENDING_APPROVAL = "pending_approval"


# Statuses only an operator may set or clear
ADMIN_CONTROLLED_STATUSES = frozenset({CourierStatus.SUSPENDED, CourierStatus.PENDING_APPROVAL})


class Courier(Base):
    """Courier profile with last known position and dispatch statistics"""

    __tablename__ = "couriers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone_number = Column(String(20), unique=True, index=True, nullable=True)
    vehicle_type = Column(String(20), nullable=False, default="motorcycle")

    status = Column(SQLEnum(CourierStatus), nullable=False, default=CourierStatus.PENDING_APPROVAL, index=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    last_location_update = Column(DateTime, nullable=True)

    rating = Column(Float, nullable=True)  # 0-5, unset for new couriers
    completed_deliveries = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_geolocated(self) -> bool:
        return self.latitude is not None and self.longitude is not None
