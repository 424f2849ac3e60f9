"""
Program model: the budget container and its membership roster.
"""
from sqlalchemy import Column, String, Date, Text, Enum as SQLEnum, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from rabtrack.db.base import BaseModel, SoftDeleteMixin
import enum


class ProgramStatus(str, enum.Enum):
    """Program lifecycle status."""
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"


# closed and cancelled are terminal
ALLOWED_TRANSITIONS = {
    ProgramStatus.DRAFT: {ProgramStatus.ACTIVE, ProgramStatus.CANCELLED},
    ProgramStatus.ACTIVE: {ProgramStatus.CLOSED, ProgramStatus.CANCELLED},
    ProgramStatus.CLOSED: set(),
    ProgramStatus.CANCELLED: set(),
}


class MemberRole(str, enum.Enum):
    """Role of a user inside one program."""
    LEAD = "lead"
    TREASURER = "treasurer"
    MEMBER = "member"


class MembershipStatus(str, enum.Enum):
    """Invitation state of a membership."""
    PENDING = "pending"
    APPROVED = "approved"


class Program(SoftDeleteMixin, BaseModel):
    """Program with a line-item budget plan and its transactions."""
    __tablename__ = "programs"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=True)
    status = Column(SQLEnum(ProgramStatus), default=ProgramStatus.DRAFT, nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])
    members = relationship("ProgramMember", back_populates="program")
    budget_lines = relationship("BudgetLine", back_populates="program", order_by="BudgetLine.id")
    transactions = relationship("Transaction", back_populates="program", order_by="Transaction.id")

    def is_draft(self) -> bool:
        return self.status == ProgramStatus.DRAFT

    def is_active(self) -> bool:
        return self.status == ProgramStatus.ACTIVE

    def has_budget_lines(self) -> bool:
        """True if at least one live budget line exists."""
        return any(line.deleted_at is None for line in self.budget_lines)

    def can_accept_transactions(self) -> bool:
        """Transactions are accepted only while active and with a budget plan."""
        return self.is_active() and self.has_budget_lines()

    def can_transition_to(self, status: ProgramStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]


class ProgramMember(BaseModel):
    """Junction table for Program and User with the member's role."""
    __tablename__ = "program_members"

    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(SQLEnum(MemberRole), default=MemberRole.MEMBER, nullable=False)
    status = Column(SQLEnum(MembershipStatus), default=MembershipStatus.PENDING, nullable=False)

    # Relationships
    program = relationship("Program", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # One role per user per program
    __table_args__ = (
        UniqueConstraint('program_id', 'user_id', name='uq_program_member'),
    )
