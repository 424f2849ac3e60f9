"""
Tests for audit log queries and append-only enforcement.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from rabtrack.core.exceptions import AuditImmutableError
from rabtrack.models import AuditLog, AuditModule
from rabtrack.schemas.audit import AuditLogFilter
from rabtrack.schemas.program import ProgramCreate
from rabtrack.schemas.transaction import IncomeCreate
from rabtrack.services import audit_service, program_service, transaction_service


def _program_at(db, user, name, created_at):
    return program_service.create_program(
        db, ProgramCreate(name=name, period_start=date(2025, 12, 1)), user.id, created_at
    )


def test_record_appends_entry(db, lead, now):
    entry = audit_service.record(
        db, lead.id, "update", AuditModule.PROGRAM, 7,
        {"name": "lama"}, {"name": "baru"}, "192.168.1.20", now,
    )
    db.commit()

    stored = db.get(AuditLog, entry.id)
    assert stored.module == "PROGRAM"
    assert stored.before_data == {"name": "lama"}
    assert stored.after_data == {"name": "baru"}
    assert stored.ip_address == "192.168.1.20"
    assert stored.created_at == now


def test_audit_entries_cannot_be_updated(db, lead, draft_program):
    entry = db.query(AuditLog).first()
    entry.action = "tampered"

    with pytest.raises(AuditImmutableError) as excinfo:
        db.flush()
    assert excinfo.value.operation == "update"
    db.rollback()

    assert db.get(AuditLog, entry.id).action == "create"


def test_audit_entries_cannot_be_deleted(db, lead, draft_program):
    entry = db.query(AuditLog).first()
    db.delete(entry)

    with pytest.raises(AuditImmutableError) as excinfo:
        db.flush()
    assert excinfo.value.operation == "delete"
    db.rollback()

    assert db.query(AuditLog).count() == 1


def test_filter_by_module_entity_and_user(db, lead, treasurer, plan, now):
    transaction_service.create_income_transaction(
        db, plan.program, IncomeCreate(amount=Decimal("75"), date=date(2025, 12, 4)), treasurer.id, now
    )

    by_module = audit_service.query_audit_log(db, AuditLogFilter(module=AuditModule.RAB_ITEM))
    assert by_module.total == 2
    assert {item.module_id for item in by_module.items} == {plan.line_a.id, plan.line_b.id}

    by_entity = audit_service.query_audit_log(
        db, AuditLogFilter(module=AuditModule.RAB_ITEM, module_id=plan.line_b.id)
    )
    assert [item.action for item in by_entity.items] == ["create"]

    by_user = audit_service.query_audit_log(db, AuditLogFilter(user_id=treasurer.id))
    assert by_user.total == 1
    assert by_user.items[0].module == "TRANSACTION"


def test_date_range_covers_whole_calendar_days(db, lead):
    _program_at(db, lead, "Sebelum", datetime(2025, 12, 17, 23, 59, 59))
    _program_at(db, lead, "Pagi", datetime(2025, 12, 18, 0, 0, 0))
    _program_at(db, lead, "Malam", datetime(2025, 12, 18, 23, 59, 59))
    _program_at(db, lead, "Sesudah", datetime(2025, 12, 19, 0, 0, 0))

    page = audit_service.query_audit_log(
        db, AuditLogFilter(date_from=date(2025, 12, 18), date_to=date(2025, 12, 18))
    )

    assert [item.after_data["name"] for item in page.items] == ["Malam", "Pagi"]


def test_pagination_is_newest_first(db, lead):
    for day in range(1, 6):
        _program_at(db, lead, f"Program {day}", datetime(2025, 12, day, 8, 0, 0))

    first = audit_service.query_audit_log(db, page=1, per_page=2)
    last = audit_service.query_audit_log(db, page=3, per_page=2)

    assert first.total == 5
    assert first.pages == 3
    assert [item.after_data["name"] for item in first.items] == ["Program 5", "Program 4"]
    assert [item.after_data["name"] for item in last.items] == ["Program 1"]


def test_page_size_defaults_and_is_clamped(db, lead, draft_program):
    assert audit_service.query_audit_log(db).per_page == 20
    assert audit_service.query_audit_log(db, per_page=1000).per_page == 100
    empty = audit_service.query_audit_log(db, AuditLogFilter(user_id=9999))
    assert empty.total == 0
    assert empty.pages == 0
    assert empty.items == []


def test_program_audit_log_is_scoped_to_one_program(db, lead, plan, make_line, expense_request, now):
    expense = transaction_service.create_expense_transaction(
        db, plan.program, expense_request(100, (plan.line_a.id, 100)), lead.id, now
    )
    transaction_service.delete_transaction(db, expense, lead.id, now)

    other = _program_at(db, lead, "Lain", now)
    make_line(other, name="Lain-lain")

    page = audit_service.program_audit_log(db, plan.program.id)
    modules = sorted((item.module, item.module_id, item.action) for item in page.items)

    assert modules == sorted([
        ("PROGRAM", plan.program.id, "create"),
        ("PROGRAM", plan.program.id, "update_status"),
        ("RAB_ITEM", plan.line_a.id, "create"),
        ("RAB_ITEM", plan.line_b.id, "create"),
        ("TRANSACTION", expense.id, "create"),
        ("TRANSACTION", expense.id, "delete"),
    ])

    only_transactions = audit_service.program_audit_log(
        db, plan.program.id, AuditLogFilter(module=AuditModule.TRANSACTION)
    )
    assert only_transactions.total == 2
