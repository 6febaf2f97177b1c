import itertools
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from tally.config import EngineConfig
from tally.database import Base, create_db_engine, create_session_factory
from tally.engine import BalanceEngine
from tally.ledger import InMemoryLedger
from tally.schemas import ExpenseRecord, SettlementRecord, SettlementStatus, SplitRecord

GROUP = "g1"
_ids = itertools.count(1)


def make_expense(payer: str, amount, splits: dict, group_id: str = GROUP, expense_id: str | None = None) -> ExpenseRecord:
    return ExpenseRecord(
        id=expense_id or f"e{next(_ids)}",
        group_id=group_id,
        payer_id=payer,
        amount=Decimal(str(amount)),
        splits=[SplitRecord(participant_id=p, amount=Decimal(str(a))) for p, a in splits.items()],
    )


def make_settlement(
    payer: str,
    recipient: str,
    amount,
    status: SettlementStatus = SettlementStatus.COMPLETED,
    group_id: str = GROUP,
) -> SettlementRecord:
    return SettlementRecord(
        id=f"s{next(_ids)}",
        group_id=group_id,
        payer_id=payer,
        recipient_id=recipient,
        amount=Decimal(str(amount)),
        status=status,
        created_by=payer,
    )


@pytest.fixture
def scenario_expenses():
    """A pays 100 for A, B, C; B pays 60 for B, C."""
    return [
        make_expense("A", "100.00", {"A": "33.33", "B": "33.33", "C": "33.34"}),
        make_expense("B", "60.00", {"B": "30.00", "C": "30.00"}),
    ]


@pytest.fixture
def frozen_now():
    return datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger(scenario_expenses):
    return InMemoryLedger(scenario_expenses)


@pytest.fixture
def engine(ledger, frozen_now):
    return BalanceEngine(ledger, EngineConfig(), clock=lambda: frozen_now)


@pytest.fixture
def db_session():
    engine = create_db_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
