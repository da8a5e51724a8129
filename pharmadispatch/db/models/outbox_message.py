"""
Outbox Message Model - Transactional Outbox Pattern
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, JSON

from pharmadispatch.db.database import Base


class MessageChannel(str, enum.Enum):
    PUSH = "push"
    SMS = "sms"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """Notification written in the same transaction as the state change it announces"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    channel = Column(SQLEnum(MessageChannel), nullable=False, default=MessageChannel.PUSH)
    recipient_type = Column(String(20), nullable=False)  # courier, pharmacy
    recipient_id = Column(String(50), nullable=False)

    message_type = Column(String(50), nullable=False)  # e.g. "delivery_assigned"
    message_content = Column(JSON, nullable=False)

    status = Column(SQLEnum(MessageStatus), default=MessageStatus.PENDING, index=True)
    retry_count = Column(Integer, default=0)
    max_retries = Column(Integer, default=5)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    last_error = Column(String(1000), nullable=True)
