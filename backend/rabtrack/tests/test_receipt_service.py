"""
Tests for receipt markers and their effect on budget line status.
"""
from datetime import date
from decimal import Decimal

import pytest

from rabtrack.core.config import Settings
from rabtrack.core.exceptions import InvalidReceiptError, NotFoundError
from rabtrack.models import AuditLog, BudgetLineStatus
from rabtrack.schemas.receipt import ReceiptCreate
from rabtrack.schemas.transaction import IncomeCreate
from rabtrack.services import receipt_service, transaction_service


def _receipt(mime_type="image/png"):
    return ReceiptCreate(file_path="receipts/2025/12/struk.png", original_filename="struk.png", mime_type=mime_type)


@pytest.fixture
def full_expense(db, lead, plan, expense_request, now):
    """Expense that consumes line_b completely."""
    return transaction_service.create_expense_transaction(
        db, plan.program, expense_request(500, (plan.line_b.id, 500)), lead.id, now
    )


def test_attach_receipt_completes_fully_funded_line(db, lead, plan, full_expense, now):
    db.refresh(plan.line_b)
    assert plan.line_b.status == BudgetLineStatus.PARTIALLY_FULFILLED

    receipt = receipt_service.attach_receipt(db, full_expense, _receipt("IMAGE/PNG"), lead.id, now)

    assert receipt.mime_type == "image/png"
    assert receipt.uploaded_by == lead.id
    db.refresh(plan.line_b)
    assert plan.line_b.status == BudgetLineStatus.FULFILLED
    assert [r.id for r in receipt_service.list_receipts(db, full_expense)] == [receipt.id]

    entry = db.query(AuditLog).filter(AuditLog.action == "attach_receipt").one()
    assert entry.module == "TRANSACTION"
    assert entry.module_id == full_expense.id


def test_remove_receipt_reverts_status(db, lead, plan, full_expense, now):
    receipt = receipt_service.attach_receipt(db, full_expense, _receipt(), lead.id, now)
    receipt_id = receipt.id

    receipt_service.remove_receipt(db, receipt, lead.id, now)

    db.refresh(plan.line_b)
    assert plan.line_b.status == BudgetLineStatus.PARTIALLY_FULFILLED
    with pytest.raises(NotFoundError):
        receipt_service.get_receipt(db, receipt_id)
    entry = db.query(AuditLog).filter(AuditLog.action == "remove_receipt").one()
    assert entry.before_data["id"] == receipt_id


def test_income_does_not_take_receipts(db, lead, plan, now):
    income = transaction_service.create_income_transaction(
        db, plan.program, IncomeCreate(amount=Decimal("100"), date=date(2025, 12, 2)), lead.id, now
    )
    with pytest.raises(InvalidReceiptError):
        receipt_service.attach_receipt(db, income, _receipt(), lead.id, now)


def test_unsupported_receipt_type_is_rejected(db, lead, full_expense, now):
    with pytest.raises(InvalidReceiptError):
        receipt_service.attach_receipt(db, full_expense, _receipt("application/zip"), lead.id, now)
    assert receipt_service.list_receipts(db, full_expense) == []


def test_receipt_on_deleted_transaction_is_rejected(db, lead, full_expense, now):
    transaction_service.delete_transaction(db, full_expense, lead.id, now)
    with pytest.raises(NotFoundError):
        receipt_service.attach_receipt(db, full_expense, _receipt(), lead.id, now)


def test_allowed_receipt_types_parse_from_comma_string():
    settings = Settings(ALLOWED_RECEIPT_TYPES="image/jpeg, Image/WebP ,")
    assert settings.ALLOWED_RECEIPT_TYPES == ["image/jpeg", "image/webp"]
