"""
Wallet Transaction Model - Immutable ledger entries
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, Enum as SQLEnum

from pharmadispatch.db.database import Base


class TransactionType(str, enum.Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionCategory(str, enum.Enum):
    TOPUP = "topup"
    DELIVERY_EARNING = "delivery_earning"
    COMMISSION = "commission"
    WITHDRAWAL = "withdrawal"
    BONUS = "bonus"
    REFUND = "refund"
    ORDER_SETTLEMENT = "order_settlement"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WalletTransaction(Base):
    """One ledger movement.

    Written exactly once. Only ``status`` (and ``processed_at``) change
    afterwards, when an asynchronous payout moves from pending to completed
    or failed.
    """

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=True, index=True)

    type = Column(SQLEnum(TransactionType), nullable=False)
    category = Column(SQLEnum(TransactionCategory), nullable=False)
    status = Column(SQLEnum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED, index=True)

    amount = Column(Numeric(12, 2), nullable=False)  # Always positive, sign comes from type
    balance_after = Column(Numeric(12, 2), nullable=False)

    # Paired entries share a base reference (COM-XXXX / COM-XXXX-PLT)
    reference = Column(String(64), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    payment_method = Column(String(30), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    @property
    def signed_amount(self):
        return self.amount if self.type == TransactionType.CREDIT else -self.amount
