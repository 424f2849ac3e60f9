"""Models package - Import all models for SQLAlchemy registration."""
from rabtrack.models.user import User
from rabtrack.models.program import (
    Program, ProgramMember, ProgramStatus, MemberRole, MembershipStatus, ALLOWED_TRANSITIONS
)
from rabtrack.models.budget_line import BudgetLine, BudgetLineStatus
from rabtrack.models.transaction import Transaction, Allocation, TransactionType
from rabtrack.models.receipt import Receipt
from rabtrack.models.audit import AuditLog, AuditModule

__all__ = [
    "User",
    "Program",
    "ProgramMember",
    "ProgramStatus",
    "MemberRole",
    "MembershipStatus",
    "ALLOWED_TRANSITIONS",
    "BudgetLine",
    "BudgetLineStatus",
    "Transaction",
    "Allocation",
    "TransactionType",
    "Receipt",
    "AuditLog",
    "AuditModule",
]
