"""
Shared fixtures: a fresh SQLite database file per test and program builders.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from rabtrack.core.logging_config import configure_logging, reset_logging
from rabtrack.db.session import init_db, make_engine
from rabtrack.models import ProgramStatus, User
from rabtrack.schemas.budget_line import BudgetLineCreate
from rabtrack.schemas.program import ProgramCreate
from rabtrack.schemas.transaction import AllocationCreate, ExpenseCreate
from rabtrack.services import budget_line_service, program_service

NOW = datetime(2025, 12, 18, 9, 0, 0)


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'rabtrack.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _user(db, name):
    user = User(name=name, email=f"{name.lower()}@example.org", created_at=NOW, updated_at=NOW)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def lead(db):
    return _user(db, "Ketua")


@pytest.fixture
def treasurer(db):
    return _user(db, "Bendahara")


@pytest.fixture
def outsider(db):
    return _user(db, "Tamu")


@pytest.fixture
def draft_program(db, lead):
    return program_service.create_program(
        db,
        ProgramCreate(name="Bakti Sosial 2025", period_start=date(2025, 12, 1), period_end=date(2026, 1, 31)),
        acting_user_id=lead.id,
        now=NOW,
        origin_address="10.0.0.1",
    )


@pytest.fixture
def make_line(db, lead):
    """Create a budget line on a draft program."""
    def _make(program, name="Konsumsi", volume="10", unit_price="100", unit="paket", category=None):
        return budget_line_service.create_budget_line(
            db,
            program,
            BudgetLineCreate(
                name=name,
                category=category,
                volume=Decimal(volume),
                unit=unit,
                unit_price=Decimal(unit_price),
            ),
            acting_user_id=lead.id,
            now=NOW,
        )
    return _make


@pytest.fixture
def plan(db, lead, draft_program, make_line):
    """Active program with line_a planned at 1000 and line_b planned at 500."""
    line_a = make_line(draft_program, name="Konsumsi", volume="10", unit_price="100")
    line_b = make_line(draft_program, name="Transport", volume="4", unit_price="125", unit="trip")
    program_service.change_status(db, draft_program, ProgramStatus.ACTIVE, lead.id, NOW)
    return SimpleNamespace(program=draft_program, line_a=line_a, line_b=line_b)


@pytest.fixture
def expense_request():
    """Build an ExpenseCreate from (budget_line_id, amount) pairs."""
    def _build(amount, *allocations, description="Belanja"):
        return ExpenseCreate(
            amount=Decimal(str(amount)),
            date=date(2025, 12, 20),
            description=description,
            rab_allocations=[
                AllocationCreate(rab_item_id=line_id, amount=Decimal(str(value)))
                for line_id, value in allocations
            ],
        )
    return _build
