"""Ledger readers: where expenses and settlements come from.

The engine only talks to the LedgerReader protocol. SQLLedgerReader backs it
with the SQLAlchemy models; InMemoryLedger keeps everything in dicts for tests
and for embedders that already hold the records.
"""

import logging
import threading
from typing import Protocol

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tally.errors import NotFoundError, StateConflictError
from tally.models import Expense, ExpenseSplit, Settlement, SettlementExpense
from tally.schemas import ExpenseRecord, SettlementRecord
from tally.serializers import apply_settlement_record, serialize_expense, serialize_settlement

logger = logging.getLogger("tally")


class LedgerReader(Protocol):
    def expenses_for_group(self, group_id: str) -> list[ExpenseRecord]: ...

    def settlements_for_group(self, group_id: str) -> list[SettlementRecord]: ...

    def get_settlement(self, settlement_id: str) -> SettlementRecord | None: ...

    def add_settlement(self, record: SettlementRecord) -> SettlementRecord: ...

    def save_settlement(self, record: SettlementRecord) -> SettlementRecord: ...

    def delete_settlement(self, settlement_id: str) -> None: ...


class InMemoryLedger:
    """Dict-backed ledger with the same version check as the SQL store."""

    def __init__(self, expenses: list[ExpenseRecord] | None = None):
        self._expenses: dict[str, ExpenseRecord] = {}
        self._settlements: dict[str, SettlementRecord] = {}
        self._lock = threading.Lock()
        for expense in expenses or []:
            self.add_expense(expense)

    def add_expense(self, record: ExpenseRecord) -> ExpenseRecord:
        with self._lock:
            self._expenses[record.id] = record
        return record

    def expenses_for_group(self, group_id: str) -> list[ExpenseRecord]:
        return [e for e in self._expenses.values() if e.group_id == group_id]

    def settlements_for_group(self, group_id: str) -> list[SettlementRecord]:
        return [s for s in self._settlements.values() if s.group_id == group_id]

    def get_settlement(self, settlement_id: str) -> SettlementRecord | None:
        return self._settlements.get(settlement_id)

    def add_settlement(self, record: SettlementRecord) -> SettlementRecord:
        stored = record.model_copy(update={"version": 1})
        with self._lock:
            self._settlements[record.id] = stored
        return stored

    def save_settlement(self, record: SettlementRecord) -> SettlementRecord:
        with self._lock:
            current = self._settlements.get(record.id)
            if current is None:
                raise NotFoundError("Settlement not found")
            if current.version != record.version:
                raise StateConflictError("Settlement was changed concurrently")
            stored = record.model_copy(update={"version": record.version + 1})
            self._settlements[record.id] = stored
        return stored

    def delete_settlement(self, settlement_id: str) -> None:
        with self._lock:
            if self._settlements.pop(settlement_id, None) is None:
                raise NotFoundError("Settlement not found")


class SQLLedgerReader:
    def __init__(self, db: Session):
        self.db = db

    def add_expense(self, record: ExpenseRecord) -> ExpenseRecord:
        expense = Expense(
            id=record.id,
            group_id=record.group_id,
            description=record.description,
            amount=record.amount,
            paid_by_id=record.payer_id,
        )
        for position, split in enumerate(record.splits):
            expense.splits.append(ExpenseSplit(
                participant_id=split.participant_id,
                amount_owed=split.amount,
                position=position,
            ))
        self.db.add(expense)
        self.db.commit()
        self.db.refresh(expense)
        return serialize_expense(expense)

    def expenses_for_group(self, group_id: str) -> list[ExpenseRecord]:
        expenses = (
            self.db.query(Expense)
            .filter(Expense.group_id == group_id)
            .order_by(Expense.created_at, Expense.id)
            .all()
        )
        return [serialize_expense(e) for e in expenses]

    def settlements_for_group(self, group_id: str) -> list[SettlementRecord]:
        settlements = (
            self.db.query(Settlement)
            .filter(Settlement.group_id == group_id)
            .order_by(Settlement.created_at, Settlement.id)
            .all()
        )
        return [serialize_settlement(s) for s in settlements]

    def get_settlement(self, settlement_id: str) -> SettlementRecord | None:
        settlement = self.db.query(Settlement).filter(Settlement.id == settlement_id).first()
        if not settlement:
            return None
        return serialize_settlement(settlement)

    def add_settlement(self, record: SettlementRecord) -> SettlementRecord:
        settlement = Settlement(
            id=record.id,
            group_id=record.group_id,
            payer_id=record.payer_id,
            recipient_id=record.recipient_id,
            amount=record.amount,
            status=record.status.value,
            note=record.note,
            created_by_id=record.created_by,
            created_at=record.created_at,
        )
        for expense_id in record.expense_ids:
            settlement.expenses.append(SettlementExpense(expense_id=expense_id))
        self.db.add(settlement)
        self.db.commit()
        self.db.refresh(settlement)
        return serialize_settlement(settlement)

    def save_settlement(self, record: SettlementRecord) -> SettlementRecord:
        settlement = self.db.query(Settlement).filter(Settlement.id == record.id).first()
        if not settlement:
            raise NotFoundError("Settlement not found")
        if settlement.version != record.version:
            raise StateConflictError("Settlement was changed concurrently")

        apply_settlement_record(settlement, record)
        try:
            self.db.commit()
        except StaleDataError:
            # Another session updated the row between our read and our write
            self.db.rollback()
            logger.warning(
                "Concurrent settlement update rejected",
                extra={"extra_data": {"settlement_id": record.id}},
            )
            raise StateConflictError("Settlement was changed concurrently")
        self.db.refresh(settlement)
        return serialize_settlement(settlement)

    def delete_settlement(self, settlement_id: str) -> None:
        settlement = self.db.query(Settlement).filter(Settlement.id == settlement_id).first()
        if not settlement:
            raise NotFoundError("Settlement not found")
        self.db.delete(settlement)
        self.db.commit()
