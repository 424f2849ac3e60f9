"""
User model referenced by programs, transactions, receipts and audit entries.
"""
from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship
from rabtrack.db.base import BaseModel


class User(BaseModel):
    """User identity; authentication lives outside the budget core."""
    __tablename__ = "users"

    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    memberships = relationship("ProgramMember", back_populates="user")
