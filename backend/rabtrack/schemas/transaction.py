"""
Pydantic schemas for Transaction entity.
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date as date_type, datetime
from decimal import Decimal
from rabtrack.models.transaction import TransactionType


class AllocationCreate(BaseModel):
    """Amount of an expense attributed to one budget line."""
    rab_item_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)


class IncomeCreate(BaseModel):
    """Schema for income creation."""
    amount: Decimal = Field(gt=0, decimal_places=2)
    date: date_type
    description: Optional[str] = None


class ExpenseCreate(BaseModel):
    """Schema for expense creation."""
    amount: Decimal = Field(gt=0, decimal_places=2)
    date: date_type
    description: Optional[str] = None
    rab_allocations: List[AllocationCreate] = []  # Emptiness is rejected by the budget engine


class TransactionUpdate(BaseModel):
    """Schema for transaction update. rab_allocations replaces the whole set when given."""
    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    date: Optional[date_type] = None
    description: Optional[str] = None
    rab_allocations: Optional[List[AllocationCreate]] = None


class AllocationResponse(BaseModel):
    """Schema for allocation response."""
    id: int
    budget_line_id: int
    amount: Decimal

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    """Schema for transaction response."""
    id: int
    program_id: int
    type: TransactionType
    date: date_type
    amount: Decimal
    description: Optional[str] = None
    created_by: Optional[int] = None
    allocations: List[AllocationResponse] = []
    receipt_count: int = 0
    created_at: datetime
    updated_at: datetime
