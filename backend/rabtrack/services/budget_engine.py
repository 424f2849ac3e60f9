"""
Budget engine: allocation validation and budget line status derivation.

Stateless rules over the persisted allocations. Nothing here commits; the
calling service owns the unit of work.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from rabtrack.core.exceptions import BudgetExceededError, BudgetViolation
from rabtrack.core.utils import to_money
from rabtrack.models.budget_line import BudgetLine, BudgetLineStatus
from rabtrack.models.receipt import Receipt
from rabtrack.models.transaction import Allocation, TransactionType
from rabtrack.schemas.transaction import AllocationCreate

logger = logging.getLogger(__name__)


def realized_amount(db: Session, budget_line_id: int) -> Decimal:
    """Sum of every allocation against the line."""
    total = db.query(
        func.coalesce(func.sum(Allocation.amount), 0)
    ).filter(Allocation.budget_line_id == budget_line_id).scalar()
    return to_money(total)


def remaining_amount(db: Session, budget_line: BudgetLine) -> Decimal:
    return to_money(budget_line.planned_amount) - realized_amount(db, budget_line.id)


def lock_budget_lines(db: Session, program_id: int, budget_line_ids: Iterable[int]) -> Dict[int, BudgetLine]:
    """
    Load live budget lines of a program with a row lock, in id order.

    The lock is held until the surrounding unit of work ends, so concurrent
    allocations against the same line serialize here.
    """
    ids = sorted(set(budget_line_ids))
    if not ids:
        return {}
    lines = db.query(BudgetLine).filter(
        BudgetLine.program_id == program_id,
        BudgetLine.id.in_(ids),
        BudgetLine.deleted_at.is_(None)
    ).order_by(BudgetLine.id).with_for_update().all()
    return {line.id: line for line in lines}


def validate_allocations(
    db: Session,
    allocations: Sequence[AllocationCreate],
    program_id: int,
) -> List[BudgetViolation]:
    """
    Report every allocation that would overshoot its budget line.

    Lines are looked up within the program; a missing line is reported as a
    violation too so a whole batch is checked in one pass. Allocations in the
    same batch that target the same line are counted cumulatively. An empty
    result means the batch is valid. Performs no writes.
    """
    violations: List[BudgetViolation] = []
    pending: Dict[int, Decimal] = {}

    for allocation in allocations:
        line_id = allocation.rab_item_id
        amount = to_money(allocation.amount)
        line = db.query(BudgetLine).filter(
            BudgetLine.program_id == program_id,
            BudgetLine.id == line_id,
            BudgetLine.deleted_at.is_(None)
        ).first()

        if line is None:
            violations.append(BudgetViolation(budget_line_id=line_id, requested=amount))
            continue

        already = realized_amount(db, line.id) + pending.get(line.id, Decimal("0.00"))
        planned = to_money(line.planned_amount)
        if already + amount > planned:
            violations.append(BudgetViolation(
                budget_line_id=line.id,
                requested=amount,
                name=line.name,
                remaining=planned - already,
            ))
        pending[line.id] = pending.get(line.id, Decimal("0.00")) + amount

    return violations


def ensure_within_budget(db: Session, budget_line_ids: Iterable[int]) -> None:
    """
    Re-check realized totals after allocations were flushed.

    Runs inside the same unit of work as the write, so anything committed by
    a concurrent writer in between is seen here and the whole unit aborts.
    """
    violations = []
    for line_id in sorted(set(budget_line_ids)):
        line = db.get(BudgetLine, line_id)
        realized = realized_amount(db, line_id)
        planned = to_money(line.planned_amount)
        if realized > planned:
            violations.append(BudgetViolation(
                budget_line_id=line_id,
                requested=realized,
                name=line.name,
                remaining=planned - realized,
            ))
    if violations:
        logger.warning(f"Concurrent allocation overshoot detected on lines {[v.budget_line_id for v in violations]}")
        raise BudgetExceededError(violations)


def _receipts_complete(db: Session, allocations: List[Allocation]) -> bool:
    # Unique expense transactions behind the allocations; vacuously complete when empty
    expense_ids = {
        a.transaction_id for a in allocations
        if a.transaction.type == TransactionType.EXPENSE
    }
    if not expense_ids:
        return True
    with_receipts = {
        row[0] for row in db.query(Receipt.transaction_id).filter(
            Receipt.transaction_id.in_(expense_ids)
        ).distinct()
    }
    return all(transaction_id in with_receipts for transaction_id in expense_ids)


def derive_status(realized: Decimal, planned: Decimal, receipts_complete: bool) -> BudgetLineStatus:
    """Status decision table for one budget line."""
    if realized <= 0:
        return BudgetLineStatus.UNFULFILLED
    if realized < planned:
        return BudgetLineStatus.PARTIALLY_FULFILLED
    if realized == planned and receipts_complete:
        return BudgetLineStatus.FULFILLED
    # Exactly planned but missing evidence, or over-allocated
    return BudgetLineStatus.PARTIALLY_FULFILLED


def recompute_status(db: Session, budget_line: BudgetLine, now: Optional[datetime] = None) -> BudgetLineStatus:
    """
    Derive and persist a budget line's status from its current allocations.

    Idempotent: the result depends only on persisted state. A line whose
    realized amount exceeds its plan keeps ``partially_fulfilled`` but is
    flagged ``over_allocated`` and logged as an anomaly.
    """
    allocations = db.query(Allocation).filter(Allocation.budget_line_id == budget_line.id).all()
    realized = to_money(sum((a.amount for a in allocations), Decimal("0.00")))
    planned = to_money(budget_line.planned_amount)

    status = derive_status(realized, planned, _receipts_complete(db, allocations))
    over_allocated = realized > planned
    if over_allocated:
        logger.warning(
            f"Budget line {budget_line.id} is over-allocated: realized {realized} > planned {planned}"
        )

    if budget_line.status != status or budget_line.over_allocated != over_allocated:
        logger.debug(f"Budget line {budget_line.id} status {budget_line.status} -> {status}")
        budget_line.status = status
        budget_line.over_allocated = over_allocated
        if now is not None:
            budget_line.updated_at = now
    db.flush()
    return status


def recompute_lines(db: Session, budget_line_ids: Iterable[int], now: Optional[datetime] = None) -> Dict[int, BudgetLineStatus]:
    """Recompute every distinct line once, in id order."""
    results: Dict[int, BudgetLineStatus] = OrderedDict()
    for line_id in sorted(set(budget_line_ids)):
        line = db.get(BudgetLine, line_id)
        if line is not None:
            results[line_id] = recompute_status(db, line, now)
    return results
