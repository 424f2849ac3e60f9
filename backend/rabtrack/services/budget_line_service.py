"""
Budget line (RAB item) service: structural edits of a program's budget plan.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from rabtrack.core.exceptions import InvalidStateError, NotFoundError
from rabtrack.core.utils import snapshot, to_money
from rabtrack.db.session import atomic
from rabtrack.models.audit import AuditModule
from rabtrack.models.budget_line import BudgetLine, BudgetLineStatus
from rabtrack.models.program import Program
from rabtrack.models.transaction import Allocation
from rabtrack.schemas.budget_line import (
    BudgetLineCreate,
    BudgetLineResponse,
    BudgetLineUpdate,
    LineAllocationResponse,
)
from rabtrack.services import audit_service, budget_engine

logger = logging.getLogger(__name__)


def _ensure_plan_editable(program: Program) -> None:
    """The plan is frozen once the program leaves draft."""
    if program.deleted_at is not None:
        raise NotFoundError("Program", program.id)
    if not program.is_draft():
        raise InvalidStateError(
            "Budget lines can only be changed while the program is in draft",
            current_status=program.status.value,
        )


def create_budget_line(
    db: Session,
    program: Program,
    data: BudgetLineCreate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> BudgetLine:
    with atomic(db):
        _ensure_plan_editable(program)

        line = BudgetLine(
            program_id=program.id,
            name=data.name,
            category=data.category,
            volume=to_money(data.volume),
            unit=data.unit,
            unit_price=to_money(data.unit_price),
            planned_amount=to_money(data.volume * data.unit_price),
            status=BudgetLineStatus.UNFULFILLED,
            over_allocated=False,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )
        db.add(line)
        db.flush()
        budget_engine.recompute_status(db, line, now)

        audit_service.record(
            db, acting_user_id, "create", AuditModule.RAB_ITEM, line.id,
            None, snapshot(line), origin_address, now,
        )

    logger.info(f"Budget line {line.id} '{line.name}' planned at {line.planned_amount} on program {program.id}")
    return line


def update_budget_line(
    db: Session,
    line: BudgetLine,
    data: BudgetLineUpdate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> BudgetLine:
    """Apply a structural edit, re-derive planned_amount and recompute status."""
    with atomic(db):
        if line.deleted_at is not None:
            raise NotFoundError("BudgetLine", line.id)
        _ensure_plan_editable(line.program)
        before = snapshot(line)

        fields = data.model_dump(exclude_unset=True)
        for key in ("name", "unit"):
            if fields.get(key) is not None:
                setattr(line, key, fields[key])
        # category and notes may be cleared explicitly
        for key in ("category", "notes"):
            if key in fields:
                setattr(line, key, fields[key])
        if fields.get("volume") is not None:
            line.volume = to_money(fields["volume"])
        if fields.get("unit_price") is not None:
            line.unit_price = to_money(fields["unit_price"])

        line.planned_amount = to_money(to_money(line.volume) * to_money(line.unit_price))
        line.updated_at = now
        db.flush()
        budget_engine.recompute_status(db, line, now)

        audit_service.record(
            db, acting_user_id, "update", AuditModule.RAB_ITEM, line.id,
            before, snapshot(line), origin_address, now,
        )

    logger.info(f"Budget line {line.id} updated, planned amount now {line.planned_amount}")
    return line


def delete_budget_line(
    db: Session,
    line: BudgetLine,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> None:
    """Remove a line that no transaction was ever allocated to."""
    with atomic(db):
        if line.deleted_at is not None:
            raise NotFoundError("BudgetLine", line.id)
        _ensure_plan_editable(line.program)

        allocation_count = db.query(Allocation).filter(Allocation.budget_line_id == line.id).count()
        if allocation_count > 0:
            raise InvalidStateError(
                f"Budget line {line.id} has {allocation_count} allocation(s) and cannot be deleted"
            )

        line_id = line.id
        audit_service.record(
            db, acting_user_id, "delete", AuditModule.RAB_ITEM, line_id,
            snapshot(line), None, origin_address, now,
        )
        db.delete(line)
        db.flush()

    logger.info(f"Budget line {line_id} deleted")


def get_budget_line(db: Session, budget_line_id: int, program_id: Optional[int] = None) -> BudgetLine:
    """Fetch a live budget line or raise NotFoundError."""
    query = db.query(BudgetLine).filter(
        BudgetLine.id == budget_line_id,
        BudgetLine.deleted_at.is_(None)
    )
    if program_id is not None:
        query = query.filter(BudgetLine.program_id == program_id)
    line = query.first()
    if not line:
        raise NotFoundError("BudgetLine", budget_line_id)
    return line


def list_budget_lines(db: Session, program: Program) -> List[BudgetLine]:
    return db.query(BudgetLine).filter(
        BudgetLine.program_id == program.id,
        BudgetLine.deleted_at.is_(None)
    ).order_by(BudgetLine.id).all()


def budget_line_view(db: Session, line: BudgetLine) -> BudgetLineResponse:
    """Budget line with its derived realized and remaining amounts."""
    allocations = db.query(Allocation).filter(
        Allocation.budget_line_id == line.id
    ).order_by(Allocation.id).all()
    realized = to_money(sum(to_money(a.amount) for a in allocations))

    return BudgetLineResponse(
        id=line.id,
        program_id=line.program_id,
        name=line.name,
        category=line.category,
        volume=line.volume,
        unit=line.unit,
        unit_price=line.unit_price,
        planned_amount=line.planned_amount,
        realized_amount=realized,
        remaining_amount=to_money(line.planned_amount) - realized,
        status=line.status,
        over_allocated=line.over_allocated,
        notes=line.notes,
        allocations=[LineAllocationResponse.model_validate(a) for a in allocations],
        created_at=line.created_at,
        updated_at=line.updated_at,
    )
