"""
Transaction service: income/expense lifecycle and budget line allocations.

Every mutating function is one unit of work. Validation failures are raised
before anything becomes visible, and any failure after writes were staged
rolls all of them back, status recomputes included.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from rabtrack.core.config import settings
from rabtrack.core.exceptions import (
    AmountMismatchError,
    BudgetExceededError,
    InvalidStateError,
    MissingAllocationError,
    NotFoundError,
)
from rabtrack.core.utils import snapshot, to_money
from rabtrack.db.session import atomic
from rabtrack.models.audit import AuditModule
from rabtrack.models.program import Program
from rabtrack.models.receipt import Receipt
from rabtrack.models.transaction import Allocation, Transaction, TransactionType
from rabtrack.schemas.transaction import (
    AllocationCreate,
    AllocationResponse,
    ExpenseCreate,
    IncomeCreate,
    TransactionResponse,
    TransactionUpdate,
)
from rabtrack.services import audit_service, budget_engine

logger = logging.getLogger(__name__)


def transaction_snapshot(db: Session, transaction: Transaction) -> Dict[str, Any]:
    """Column values plus the current allocation set, for the audit log."""
    data = snapshot(transaction)
    data["allocations"] = [
        {"budget_line_id": a.budget_line_id, "amount": str(to_money(a.amount))}
        for a in _allocations_of(db, transaction.id)
    ]
    return data


def _allocations_of(db: Session, transaction_id: int) -> List[Allocation]:
    return db.query(Allocation).filter(
        Allocation.transaction_id == transaction_id
    ).order_by(Allocation.id).all()


def _ensure_program_ready(program: Program) -> None:
    if program.deleted_at is not None:
        raise NotFoundError("Program", program.id)
    if not program.can_accept_transactions():
        raise InvalidStateError(
            "Program is not active or has no budget lines",
            current_status=program.status.value,
        )


def _check_amount_matches(declared: Decimal, allocations: Sequence) -> None:
    allocated = to_money(sum((to_money(a.amount) for a in allocations), Decimal("0.00")))
    declared = to_money(declared)
    if abs(allocated - declared) > settings.AMOUNT_TOLERANCE:
        raise AmountMismatchError(declared, allocated)


def _validate_against_budget(db: Session, program_id: int, allocations: Sequence[AllocationCreate]) -> None:
    """Lock the referenced lines, then validate against their realized totals."""
    budget_engine.lock_budget_lines(db, program_id, [a.rab_item_id for a in allocations])
    violations = budget_engine.validate_allocations(db, allocations, program_id)
    if violations:
        logger.warning(f"Rejected allocations on program {program_id}: {len(violations)} violation(s)")
        raise BudgetExceededError(violations)


def _write_allocations(
    db: Session,
    transaction: Transaction,
    allocations: Sequence[AllocationCreate],
    now: datetime,
) -> List[int]:
    """Insert an already validated allocation set and re-check the lines after flush."""
    line_ids = [a.rab_item_id for a in allocations]
    for allocation in allocations:
        db.add(Allocation(
            transaction_id=transaction.id,
            budget_line_id=allocation.rab_item_id,
            amount=to_money(allocation.amount),
            created_at=now,
            updated_at=now,
        ))
    db.flush()

    budget_engine.ensure_within_budget(db, line_ids)
    return line_ids


def _delete_allocations(db: Session, transaction: Transaction) -> List[int]:
    """Remove the transaction's whole allocation set and return the lines it touched."""
    line_ids = sorted({a.budget_line_id for a in _allocations_of(db, transaction.id)})
    db.query(Allocation).filter(
        Allocation.transaction_id == transaction.id
    ).delete(synchronize_session="fetch")
    db.flush()
    db.expire(transaction, ["allocations"])
    return line_ids


def create_income_transaction(
    db: Session,
    program: Program,
    data: IncomeCreate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Transaction:
    """Record income. Income never allocates, so there is no budget validation."""
    with atomic(db):
        _ensure_program_ready(program)

        transaction = Transaction(
            program_id=program.id,
            type=TransactionType.INCOME,
            date=data.date,
            amount=to_money(data.amount),
            description=data.description,
            created_by=acting_user_id,
            created_at=now,
            updated_at=now,
        )
        db.add(transaction)
        db.flush()

        audit_service.record(
            db, acting_user_id, "create", AuditModule.TRANSACTION, transaction.id,
            None, transaction_snapshot(db, transaction), origin_address, now,
        )

    logger.info(f"Income {transaction.id} of {transaction.amount} recorded on program {program.id}")
    return transaction


def create_expense_transaction(
    db: Session,
    program: Program,
    data: ExpenseCreate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Transaction:
    """
    Record an expense split across budget lines.

    Preconditions, first failure wins: program accepts transactions,
    allocations are present, no allocation overshoots its line, and the
    allocations add up to the amount.
    """
    with atomic(db):
        _ensure_program_ready(program)
        if not data.rab_allocations:
            raise MissingAllocationError()

        _validate_against_budget(db, program.id, data.rab_allocations)
        _check_amount_matches(data.amount, data.rab_allocations)

        transaction = Transaction(
            program_id=program.id,
            type=TransactionType.EXPENSE,
            date=data.date,
            amount=to_money(data.amount),
            description=data.description,
            created_by=acting_user_id,
            created_at=now,
            updated_at=now,
        )
        db.add(transaction)
        db.flush()

        line_ids = _write_allocations(db, transaction, data.rab_allocations, now)
        budget_engine.recompute_lines(db, line_ids, now)

        audit_service.record(
            db, acting_user_id, "create", AuditModule.TRANSACTION, transaction.id,
            None, transaction_snapshot(db, transaction), origin_address, now,
        )

    logger.info(
        f"Expense {transaction.id} of {transaction.amount} recorded on program {program.id} "
        f"across {len(set(line_ids))} budget line(s)"
    )
    return transaction


def update_transaction(
    db: Session,
    transaction: Transaction,
    data: TransactionUpdate,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> Transaction:
    """
    Update date, amount and description, and optionally replace the allocation set.

    The old allocations are removed before the new set is validated, so the
    new set is checked against realized totals without this transaction's
    own share. Every line touched before or after is recomputed.
    """
    with atomic(db):
        if transaction.deleted_at is not None:
            raise NotFoundError("Transaction", transaction.id)

        before = transaction_snapshot(db, transaction)
        affected: List[int] = []

        if data.rab_allocations is not None:
            if transaction.is_income():
                if data.rab_allocations:
                    raise InvalidStateError("Income transactions cannot be allocated to budget lines")
            else:
                if not data.rab_allocations:
                    raise MissingAllocationError()
                affected.extend(_delete_allocations(db, transaction))
                _validate_against_budget(db, transaction.program_id, data.rab_allocations)
                affected.extend(_write_allocations(db, transaction, data.rab_allocations, now))

        if data.date is not None:
            transaction.date = data.date
        if data.amount is not None:
            transaction.amount = to_money(data.amount)
        if data.description is not None:
            transaction.description = data.description
        transaction.updated_at = now
        db.flush()

        if transaction.is_expense():
            _check_amount_matches(transaction.amount, _allocations_of(db, transaction.id))

        budget_engine.recompute_lines(db, affected, now)

        audit_service.record(
            db, acting_user_id, "update", AuditModule.TRANSACTION, transaction.id,
            before, transaction_snapshot(db, transaction), origin_address, now,
        )

    logger.info(f"Transaction {transaction.id} updated by user {acting_user_id}")
    return transaction


def delete_transaction(
    db: Session,
    transaction: Transaction,
    acting_user_id: Optional[int],
    now: datetime,
    origin_address: Optional[str] = None,
) -> None:
    """Soft-delete a transaction; an expense first releases its allocations."""
    with atomic(db):
        if transaction.deleted_at is not None:
            raise NotFoundError("Transaction", transaction.id)

        before = transaction_snapshot(db, transaction)
        affected: List[int] = []
        if transaction.is_expense():
            affected = _delete_allocations(db, transaction)
            budget_engine.recompute_lines(db, affected, now)

        transaction.deleted_at = now
        transaction.updated_at = now
        db.flush()

        audit_service.record(
            db, acting_user_id, "delete", AuditModule.TRANSACTION, transaction.id,
            before, None, origin_address, now,
        )

    logger.info(f"Transaction {transaction.id} deleted, released {len(affected)} budget line(s)")


def get_transaction(db: Session, transaction_id: int, program_id: Optional[int] = None) -> Transaction:
    """Fetch a live transaction or raise NotFoundError."""
    query = db.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.deleted_at.is_(None)
    )
    if program_id is not None:
        query = query.filter(Transaction.program_id == program_id)
    transaction = query.first()
    if not transaction:
        raise NotFoundError("Transaction", transaction_id)
    return transaction


def list_transactions(
    db: Session,
    program: Program,
    transaction_type: Optional[TransactionType] = None,
) -> List[Transaction]:
    query = db.query(Transaction).filter(
        Transaction.program_id == program.id,
        Transaction.deleted_at.is_(None)
    )
    if transaction_type is not None:
        query = query.filter(Transaction.type == transaction_type)
    return query.order_by(Transaction.date, Transaction.id).all()


def transaction_view(db: Session, transaction: Transaction) -> TransactionResponse:
    receipt_count = db.query(Receipt).filter(Receipt.transaction_id == transaction.id).count()
    return TransactionResponse(
        id=transaction.id,
        program_id=transaction.program_id,
        type=transaction.type,
        date=transaction.date,
        amount=transaction.amount,
        description=transaction.description,
        created_by=transaction.created_by,
        allocations=[AllocationResponse.model_validate(a) for a in _allocations_of(db, transaction.id)],
        receipt_count=receipt_count,
        created_at=transaction.created_at,
        updated_at=transaction.updated_at,
    )
