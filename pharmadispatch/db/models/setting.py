"""
Setting Model - Key-value store for marketplace parameters
"""
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime

from pharmadispatch.db.database import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
