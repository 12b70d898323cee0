"""
Database models
SQLAlchemy 2.0 declarative mapping
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models"""

    pass


class KeyValueDB(Base):
    """Durable key → JSON document store (offline queue, device state)"""

    __tablename__ = "key_value_store"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<KeyValue(key={self.key}, size={len(self.value)})>"
