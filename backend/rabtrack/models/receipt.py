"""
Receipt model: evidence attached to an expense transaction.
"""
from sqlalchemy import Column, String, ForeignKey, Integer
from sqlalchemy.orm import relationship
from rabtrack.db.base import BaseModel


class Receipt(BaseModel):
    """Receipt marker; the stored file itself is handled outside the core."""
    __tablename__ = "receipts"

    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    file_path = Column(String(500), nullable=False)
    original_filename = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Relationships
    transaction = relationship("Transaction", back_populates="receipts")
    uploader = relationship("User", foreign_keys=[uploaded_by])
