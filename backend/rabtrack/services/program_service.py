"""
Program service: lifecycle state machine, soft-delete cascade and aggregates.
"""
import logging
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from rabtrack.core.exceptions import InvalidStateError, NotFoundError
from rabtrack.core.utils import snapshot, to_money
from rabtrack.db.session import atomic
from rabtrack.models.audit import AuditModule
from rabtrack.models.budget_line import BudgetLine, BudgetLineStatus
from rabtrack.models.program import (
    MemberRole,
    MembershipStatus,
    Program,
    ProgramMember,
    ProgramStatus,
)
from rabtrack.models.transaction import Allocation, Transaction, TransactionType
from rabtrack.schemas.program import ProgramCreate, ProgramSummary, ProgramUpdate
from rabtrack.services import audit_service

logger = logging.getLogger(__name__)


def create_program(
    db: Session,
    data: ProgramCreate,
    acting_user_id: int,
    now: datetime,
    origin_address: Optional[str] = None,
) -> Program:
    """Create a draft program; its creator becomes the approved lead."""
    with atomic(db):
        program = Program(
            name=data.name,
            description=data.description,
            period_start=data.period_start,
            period_end=data.period_end,
            status=ProgramStatus.DRAFT,
            created_by=acting_user_id,
            created_at=now,
            updated_at=now,
        )
        db.add(program)
        db.flush()

        db.add(ProgramMember(
            program_id=program.id,
            user_id=acting_user_id,
            role=MemberRole.LEAD,
            status=MembershipStatus.APPROVED,
            created_at=now,
            updated_at=now,
        ))
        db.flush()

        audit_service.record(
            db, acting_user_id, "create", AuditModule.PROGRAM, program.id,
            None, snapshot(program), origin_address, now,
        )

    logger.info(f"Program {program.id} '{program.name}' created by user {acting_user_id}")
    return program


def update_program(
    db: Session,
    program: Program,
    data: ProgramUpdate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Program:
    with atomic(db):
        if program.deleted_at is not None:
            raise NotFoundError("Program", program.id)
        before = snapshot(program)

        fields = data.model_dump(exclude_unset=True)
        for key in ("name", "period_start"):
            if fields.get(key) is not None:
                setattr(program, key, fields[key])
        # description and period_end may be cleared explicitly
        for key in ("description", "period_end"):
            if key in fields:
                setattr(program, key, fields[key])
        if program.period_end is not None and program.period_end < program.period_start:
            raise InvalidStateError("period_end must not be before period_start")
        program.updated_at = now
        db.flush()

        audit_service.record(
            db, acting_user_id, "update", AuditModule.PROGRAM, program.id,
            before, snapshot(program), origin_address, now,
        )

    return program


def change_status(
    db: Session,
    program: Program,
    new_status: ProgramStatus,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Program:
    """
    Move a program along draft -> active -> closed/cancelled.

    Activation requires at least one budget line. Closed and cancelled are
    terminal, and a program never moves back to draft or active.
    """
    new_status = ProgramStatus(new_status)
    with atomic(db):
        if program.deleted_at is not None:
            raise NotFoundError("Program", program.id)
        if not program.can_transition_to(new_status):
            raise InvalidStateError(
                f"Cannot change program status from {program.status.value} to {new_status.value}",
                current_status=program.status.value,
            )
        if new_status == ProgramStatus.ACTIVE and not program.has_budget_lines():
            raise InvalidStateError(
                "Program must have at least one budget line before it can be activated",
                current_status=program.status.value,
            )

        before = snapshot(program)
        program.status = new_status
        program.updated_at = now
        db.flush()

        audit_service.record(
            db, acting_user_id, "update_status", AuditModule.PROGRAM, program.id,
            before, snapshot(program), origin_address, now,
        )

    logger.info(f"Program {program.id} moved to {new_status.value}")
    return program


def delete_program(
    db: Session,
    program: Program,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> None:
    """
    Soft-delete a program and everything it owns.

    Transactions go first, then budget lines, then the program, all stamped
    with the same deleted_at so a restore can find exactly this cascade.
    Allocations, receipts and memberships stay attached to their owners.
    """
    with atomic(db):
        if program.deleted_at is not None:
            raise NotFoundError("Program", program.id)
        before = snapshot(program)

        transactions = db.query(Transaction).filter(
            Transaction.program_id == program.id,
            Transaction.deleted_at.is_(None)
        ).all()
        for transaction in transactions:
            transaction.deleted_at = now

        lines = db.query(BudgetLine).filter(
            BudgetLine.program_id == program.id,
            BudgetLine.deleted_at.is_(None)
        ).all()
        for line in lines:
            line.deleted_at = now

        program.deleted_at = now
        db.flush()

        audit_service.record(
            db, acting_user_id, "delete", AuditModule.PROGRAM, program.id,
            before, None, origin_address, now,
        )

    logger.info(
        f"Program {program.id} deleted with {len(transactions)} transaction(s) "
        f"and {len(lines)} budget line(s)"
    )


def restore_program(
    db: Session,
    program: Program,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Program:
    """Undo delete_program; rows deleted individually before it stay deleted."""
    with atomic(db):
        if program.deleted_at is None:
            raise InvalidStateError("Program is not deleted")
        deleted_at = program.deleted_at
        before = snapshot(program)

        program.deleted_at = None
        program.updated_at = now
        db.query(BudgetLine).filter(
            BudgetLine.program_id == program.id,
            BudgetLine.deleted_at == deleted_at
        ).update({BudgetLine.deleted_at: None}, synchronize_session="fetch")
        db.query(Transaction).filter(
            Transaction.program_id == program.id,
            Transaction.deleted_at == deleted_at
        ).update({Transaction.deleted_at: None}, synchronize_session="fetch")
        db.flush()

        audit_service.record(
            db, acting_user_id, "restore", AuditModule.PROGRAM, program.id,
            before, snapshot(program), origin_address, now,
        )

    logger.info(f"Program {program.id} restored")
    return program


def get_program(db: Session, program_id: int, include_deleted: bool = False) -> Program:
    """Fetch a program or raise NotFoundError."""
    query = db.query(Program).filter(Program.id == program_id)
    if not include_deleted:
        query = query.filter(Program.deleted_at.is_(None))
    program = query.first()
    if not program:
        raise NotFoundError("Program", program_id)
    return program


def list_programs(db: Session, status: Optional[ProgramStatus] = None) -> List[Program]:
    query = db.query(Program).filter(Program.deleted_at.is_(None))
    if status is not None:
        query = query.filter(Program.status == status)
    return query.order_by(Program.id).all()


def _sum_transactions(db: Session, program_id: int, transaction_type: TransactionType) -> Decimal:
    total = db.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.program_id == program_id,
        Transaction.type == transaction_type,
        Transaction.deleted_at.is_(None)
    ).scalar()
    return to_money(total)


def summarize_program(db: Session, program: Program) -> ProgramSummary:
    """Derived totals of a program; nothing here is stored."""
    lines = db.query(BudgetLine).filter(
        BudgetLine.program_id == program.id,
        BudgetLine.deleted_at.is_(None)
    ).all()
    line_ids = [line.id for line in lines]

    total_budget = to_money(sum((to_money(line.planned_amount) for line in lines), Decimal("0.00")))
    total_realized = Decimal("0.00")
    if line_ids:
        total_realized = to_money(db.query(func.coalesce(func.sum(Allocation.amount), 0)).filter(
            Allocation.budget_line_id.in_(line_ids)
        ).scalar())

    total_income = _sum_transactions(db, program.id, TransactionType.INCOME)
    total_expense = _sum_transactions(db, program.id, TransactionType.EXPENSE)
    by_status = Counter(line.status.value for line in lines)

    return ProgramSummary(
        program_id=program.id,
        total_budget=total_budget,
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        total_realized=total_realized,
        total_remaining=total_budget - total_realized,
        line_count=len(lines),
        lines_by_status={status.value: by_status.get(status.value, 0) for status in BudgetLineStatus},
        over_allocated_lines=sum(1 for line in lines if line.over_allocated),
    )
