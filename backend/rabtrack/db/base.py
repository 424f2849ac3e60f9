"""
Declarative base and shared columns for all models.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, used only when a caller does not pass one."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BaseModel(Base):
    """Abstract model with id and timestamps."""
    __abstract__ = True

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class SoftDeleteMixin:
    """Rows are stamped with deleted_at instead of being removed."""

    deleted_at = Column(DateTime, nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
