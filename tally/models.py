import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from tally.database import Base


def new_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(String, primary_key=True, default=new_uuid)
    group_id = Column(String, nullable=False, index=True)
    description = Column(String(500), nullable=False, default="")
    amount = Column(Numeric(12, 2), nullable=False)
    paid_by_id = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    splits = relationship(
        "ExpenseSplit",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseSplit.position",
    )


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id = Column(String, primary_key=True, default=new_uuid)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(String, nullable=False)
    amount_owed = Column(Numeric(12, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # keeps splits in entry order

    __table_args__ = (UniqueConstraint("expense_id", "participant_id"),)

    expense = relationship("Expense", back_populates="splits")


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=new_uuid)
    group_id = Column(String, nullable=False, index=True)
    payer_id = Column(String, nullable=False)
    recipient_id = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")
    note = Column(String(500), nullable=True)
    created_by_id = Column(String, nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    # Optimistic locking: UPDATE ... WHERE version = <loaded version>
    __mapper_args__ = {"version_id_col": version}

    expenses = relationship("SettlementExpense", back_populates="settlement", cascade="all, delete-orphan")


class SettlementExpense(Base):
    __tablename__ = "settlement_expenses"

    settlement_id = Column(String, ForeignKey("settlements.id", ondelete="CASCADE"), primary_key=True)
    expense_id = Column(String, ForeignKey("expenses.id", ondelete="CASCADE"), primary_key=True)

    settlement = relationship("Settlement", back_populates="expenses")
