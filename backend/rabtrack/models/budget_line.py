"""
Budget line (RAB item) model.
"""
from sqlalchemy import Column, String, Numeric, Text, Boolean, Enum as SQLEnum, ForeignKey, Integer
from sqlalchemy.orm import relationship
from rabtrack.db.base import BaseModel, SoftDeleteMixin
import enum


class BudgetLineStatus(str, enum.Enum):
    """Fulfillment status derived from allocations and receipt evidence."""
    UNFULFILLED = "unfulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"


class BudgetLine(SoftDeleteMixin, BaseModel):
    """Planned expenditure line: volume x unit_price = planned_amount."""
    __tablename__ = "budget_lines"

    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(255), nullable=True)  # Free text: consumption, transport, lodging...
    volume = Column(Numeric(15, 2), nullable=False)
    unit = Column(String(50), nullable=False)  # people, package, unit...
    unit_price = Column(Numeric(15, 2), nullable=False)
    planned_amount = Column(Numeric(15, 2), nullable=False)  # Always volume * unit_price
    status = Column(SQLEnum(BudgetLineStatus), default=BudgetLineStatus.UNFULFILLED, nullable=False)
    over_allocated = Column(Boolean, default=False, nullable=False)  # realized > planned at last recompute
    notes = Column(Text, nullable=True)

    # Relationships
    program = relationship("Program", back_populates="budget_lines")
    allocations = relationship("Allocation", back_populates="budget_line")
