"""
Pydantic schemas for BudgetLine (RAB item) entity.
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from rabtrack.models.budget_line import BudgetLineStatus


class BudgetLineCreate(BaseModel):
    """Schema for budget line creation. planned_amount is never accepted from input."""
    name: str = Field(min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=255)
    volume: Decimal = Field(ge=0, decimal_places=2)
    unit: str = Field(min_length=1, max_length=50)
    unit_price: Decimal = Field(ge=0, decimal_places=2)
    notes: Optional[str] = None


class BudgetLineUpdate(BaseModel):
    """Schema for budget line update; omitted fields keep their value."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=255)
    volume: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=50)
    unit_price: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    notes: Optional[str] = None


class LineAllocationResponse(BaseModel):
    """One transaction's share of a budget line."""
    transaction_id: int
    amount: Decimal

    class Config:
        from_attributes = True


class BudgetLineResponse(BaseModel):
    """Schema for budget line response including derived amounts."""
    id: int
    program_id: int
    name: str
    category: Optional[str] = None
    volume: Decimal
    unit: str
    unit_price: Decimal
    planned_amount: Decimal
    realized_amount: Decimal
    remaining_amount: Decimal
    status: BudgetLineStatus
    over_allocated: bool = False
    notes: Optional[str] = None
    allocations: List[LineAllocationResponse] = []
    created_at: datetime
    updated_at: datetime
