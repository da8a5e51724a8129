"""
Wallet Model - One balance-bearing ledger account per owner
"""
import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Enum as SQLEnum, UniqueConstraint, Index, text
)

from pharmadispatch.db.database import Base


class WalletOwnerKind(str, enum.Enum):
    PLATFORM = "platform"
    PHARMACY = "pharmacy"
    COURIER = "courier"


@dataclass(frozen=True)
class WalletOwner:
    """Who a wallet belongs to: the platform itself, a pharmacy or a courier.

    Build with ``WalletOwner.platform()``, ``WalletOwner.pharmacy(id)`` or
    ``WalletOwner.courier(id)``; the platform carries no id, every other
    owner must.
    """

    kind: WalletOwnerKind
    owner_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind == WalletOwnerKind.PLATFORM and self.owner_id is not None:
            raise ValueError("the platform wallet owner has no id")
        if self.kind != WalletOwnerKind.PLATFORM and self.owner_id is None:
            raise ValueError(f"{self.kind.value} wallet owner requires an id")

    @classmethod
    def platform(cls) -> "WalletOwner":
        return cls(WalletOwnerKind.PLATFORM)

    @classmethod
    def pharmacy(cls, pharmacy_id: int) -> "WalletOwner":
        return cls(WalletOwnerKind.PHARMACY, pharmacy_id)

    @classmethod
    def courier(cls, courier_id: int) -> "WalletOwner":
        return cls(WalletOwnerKind.COURIER, courier_id)

    def __str__(self) -> str:
        if self.owner_id is None:
            return self.kind.value
        return f"{self.kind.value}:{self.owner_id}"


class Wallet(Base):
    """Current balance per owner. Equals the sum of its completed transactions."""

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    owner_kind = Column(SQLEnum(WalletOwnerKind), nullable=False)
    owner_id = Column(Integer, nullable=True)

    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="XOF")

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("owner_kind", "owner_id", name="uq_wallet_owner"),
        # NULL owner_id never collides in a unique constraint, so the single
        # platform wallet gets its own partial index
        Index(
            "uq_wallet_platform",
            "owner_kind",
            unique=True,
            postgresql_where=text("owner_id IS NULL"),
            sqlite_where=text("owner_id IS NULL"),
        ),
    )

    @property
    def owner(self) -> WalletOwner:
        return WalletOwner(self.owner_kind, self.owner_id)
