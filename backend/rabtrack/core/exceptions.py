"""
Typed exceptions raised by the budget core.

Every exception carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so the request layer can translate it into a
response without parsing messages.

    RabTrackError
    +-- NotFoundError
    +-- InvalidStateError
    +-- BudgetExceededError
    +-- AmountMismatchError
    +-- MissingAllocationError
    +-- MembershipError
    +-- InvalidReceiptError
    +-- AuditImmutableError

All of them are caller errors. None is retried automatically.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional


class RabTrackError(Exception):
    """Base exception for all budget core errors."""

    code: str = "RABTRACK_ERROR"


class NotFoundError(RabTrackError):
    """Referenced program, budget line, transaction or receipt does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidStateError(RabTrackError):
    """Operation is not allowed in the current program state."""

    code: str = "INVALID_STATE"

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


@dataclass(frozen=True)
class BudgetViolation:
    """One allocation that would overshoot (or cannot reach) its budget line."""

    budget_line_id: int
    requested: Decimal
    name: Optional[str] = None
    remaining: Optional[Decimal] = None

    @property
    def message(self) -> str:
        if self.name is None:
            return f"Budget line with ID {self.budget_line_id} not found"
        return (
            f"Expense for '{self.name}' exceeds the remaining budget. "
            f"Remaining: {self.remaining:,.2f}, attempted: {self.requested:,.2f}"
        )


class BudgetExceededError(RabTrackError):
    """One or more allocations would push a budget line past its planned amount."""

    code: str = "BUDGET_EXCEEDED"

    def __init__(self, violations: List[BudgetViolation]):
        self.violations = list(violations)
        super().__init__(", ".join(v.message for v in self.violations))


class AmountMismatchError(RabTrackError):
    """Declared transaction amount differs from the sum of its allocations."""

    code: str = "AMOUNT_MISMATCH"

    def __init__(self, declared: Decimal, allocated: Decimal):
        self.declared = declared
        self.allocated = allocated
        super().__init__(
            f"Total allocations ({allocated}) must equal the transaction amount ({declared})"
        )


class MissingAllocationError(RabTrackError):
    """Expense transaction submitted without any budget line allocation."""

    code: str = "MISSING_ALLOCATION"

    def __init__(self):
        super().__init__("Expense must be allocated to at least one budget line")


class MembershipError(RabTrackError):
    """Program membership change violates a membership rule."""

    code: str = "MEMBERSHIP_ERROR"


class InvalidReceiptError(RabTrackError):
    """Receipt cannot be attached to the given transaction."""

    code: str = "INVALID_RECEIPT"


class AuditImmutableError(RabTrackError):
    """Attempt to modify or delete an audit log entry."""

    code: str = "AUDIT_IMMUTABLE"

    def __init__(self, audit_id, operation: str):
        self.audit_id = audit_id
        self.operation = operation
        super().__init__(f"Audit log entry {audit_id} is append-only ({operation} rejected)")
