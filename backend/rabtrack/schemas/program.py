"""
Pydantic schemas for Program entity.
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, Dict
from datetime import date, datetime
from decimal import Decimal
from rabtrack.models.program import ProgramStatus, MemberRole, MembershipStatus


class ProgramBase(BaseModel):
    """Base program schema."""
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    period_start: date
    period_end: Optional[date] = None

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end is not None and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class ProgramCreate(ProgramBase):
    """Schema for program creation. Programs always start in draft."""
    pass


class ProgramUpdate(BaseModel):
    """Schema for program update."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None


class ProgramStatusUpdate(BaseModel):
    """Schema for a status transition request."""
    status: ProgramStatus


class ProgramResponse(ProgramBase):
    """Schema for program response."""
    id: int
    status: ProgramStatus
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProgramSummary(BaseModel):
    """Derived financial aggregates of a program."""
    program_id: int
    total_budget: Decimal  # Sum of planned amounts
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal  # total_income - total_expense
    total_realized: Decimal  # Sum of allocations over all lines
    total_remaining: Decimal  # total_budget - total_realized
    line_count: int
    lines_by_status: Dict[str, int] = {}
    over_allocated_lines: int = 0


class MemberCreate(BaseModel):
    """Schema for adding a member to a program."""
    user_id: int
    role: MemberRole = MemberRole.MEMBER


class MemberResponse(BaseModel):
    """Schema for program member response."""
    id: int
    program_id: int
    user_id: int
    role: MemberRole
    status: MembershipStatus
    created_at: datetime

    class Config:
        from_attributes = True
