"""
Transaction model and its budget line allocations.
"""
from sqlalchemy import Column, Numeric, Date, Text, Enum as SQLEnum, ForeignKey, Integer, Index
from sqlalchemy.orm import relationship
from rabtrack.db.base import BaseModel, SoftDeleteMixin
import enum


class TransactionType(str, enum.Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class Transaction(SoftDeleteMixin, BaseModel):
    """Income or expense event on a program."""
    __tablename__ = "transactions"

    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    type = Column(SQLEnum(TransactionType), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Relationships
    program = relationship("Program", back_populates="transactions")
    creator = relationship("User", foreign_keys=[created_by])
    allocations = relationship("Allocation", back_populates="transaction", order_by="Allocation.id")
    receipts = relationship("Receipt", back_populates="transaction", order_by="Receipt.id")

    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    def is_income(self) -> bool:
        return self.type == TransactionType.INCOME


class Allocation(BaseModel):
    """Junction table for Transaction and BudgetLine carrying the allocated amount."""
    __tablename__ = "allocations"

    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    budget_line_id = Column(Integer, ForeignKey("budget_lines.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)

    # Relationships
    transaction = relationship("Transaction", back_populates="allocations")
    budget_line = relationship("BudgetLine", back_populates="allocations")

    __table_args__ = (
        Index("ix_allocations_transaction_line", "transaction_id", "budget_line_id"),
    )
