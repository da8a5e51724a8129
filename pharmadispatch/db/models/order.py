"""
Order Model - Persisted totals computed once at creation
"""
import enum
import secrets
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, String, Float, DateTime, Numeric, ForeignKey, Enum as SQLEnum

from pharmadispatch.db.database import Base


def generate_order_reference() -> str:
    return f"ORD-{secrets.token_hex(4).upper()}"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMode(str, enum.Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"


class Order(Base):
    """Customer order. Totals are written by the fee calculator and never recomputed."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(32), unique=True, nullable=False, default=generate_order_reference, index=True)
    pharmacy_id = Column(Integer, ForeignKey("pharmacies.id"), nullable=False, index=True)

    delivery_address = Column(String(500), nullable=True)
    delivery_latitude = Column(Float, nullable=True)
    delivery_longitude = Column(Float, nullable=True)

    payment_mode = Column(SQLEnum(PaymentMode), nullable=False, default=PaymentMode.CASH)
    status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    service_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    payment_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def pharmacy_amount(self) -> Decimal:
        """What the pharmacy is owed, regardless of fees layered on top"""
        return self.subtotal
