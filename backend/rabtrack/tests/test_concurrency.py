"""
Concurrent expenses against the same budget line.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from rabtrack.core.exceptions import BudgetExceededError
from rabtrack.models import Allocation, Program, ProgramStatus, Transaction
from rabtrack.services import budget_engine, program_service, transaction_service


def test_concurrent_expenses_cannot_overdraw_a_line(
    db, session_factory, lead, draft_program, make_line, expense_request, now
):
    """Two writers race for the whole remaining 100; exactly one wins."""
    line = make_line(draft_program, name="Sewa Aula", volume="1", unit_price="100", unit="hari")
    program_service.change_status(db, draft_program, ProgramStatus.ACTIVE, lead.id, now)
    program_id, line_id, user_id = draft_program.id, line.id, lead.id

    barrier = threading.Barrier(2)

    def spend(description):
        session = session_factory()
        try:
            program = session.get(Program, program_id)
            barrier.wait(timeout=10)
            try:
                transaction_service.create_expense_transaction(
                    session, program, expense_request(100, (line_id, 100), description=description),
                    user_id, now,
                )
                return "ok"
            except BudgetExceededError:
                return "rejected"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(spend, ["first", "second"]))

    assert sorted(outcomes) == ["ok", "rejected"]

    db.expire_all()
    assert budget_engine.realized_amount(db, line_id) == Decimal("100.00")
    assert db.query(Transaction).filter(Transaction.program_id == program_id).count() == 1
    assert db.query(Allocation).filter(Allocation.budget_line_id == line_id).count() == 1
