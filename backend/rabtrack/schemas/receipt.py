"""
Pydantic schemas for Receipt entity.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ReceiptCreate(BaseModel):
    """Receipt metadata; the file was already stored by the upload layer."""
    file_path: str = Field(min_length=1, max_length=500)
    original_filename: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=1, max_length=100)


class ReceiptResponse(BaseModel):
    """Schema for receipt response."""
    id: int
    transaction_id: int
    file_path: str
    original_filename: str
    mime_type: str
    uploaded_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True
