from tally.models import Expense, Settlement
from tally.schemas import ExpenseRecord, SettlementRecord, SettlementStatus, SplitRecord


def serialize_expense(expense: Expense) -> ExpenseRecord:
    return ExpenseRecord(
        id=str(expense.id),
        group_id=str(expense.group_id),
        payer_id=str(expense.paid_by_id),
        amount=expense.amount,
        description=expense.description or "",
        splits=[
            SplitRecord(participant_id=str(s.participant_id), amount=s.amount_owed)
            for s in expense.splits
        ],
    )


def serialize_settlement(settlement: Settlement) -> SettlementRecord:
    return SettlementRecord(
        id=str(settlement.id),
        group_id=str(settlement.group_id),
        payer_id=str(settlement.payer_id),
        recipient_id=str(settlement.recipient_id),
        amount=settlement.amount,
        status=SettlementStatus(settlement.status),
        note=settlement.note,
        created_by=settlement.created_by_id,
        expense_ids=[str(link.expense_id) for link in settlement.expenses],
        cancel_reason=settlement.cancel_reason,
        created_at=settlement.created_at,
        confirmed_at=settlement.confirmed_at,
        completed_at=settlement.completed_at,
        cancelled_at=settlement.cancelled_at,
        version=settlement.version or 0,
    )


def apply_settlement_record(settlement: Settlement, record: SettlementRecord) -> None:
    """Copy the mutable fields of a record onto its row."""
    settlement.amount = record.amount
    settlement.status = record.status.value
    settlement.note = record.note
    settlement.cancel_reason = record.cancel_reason
    settlement.confirmed_at = record.confirmed_at
    settlement.completed_at = record.completed_at
    settlement.cancelled_at = record.cancelled_at
