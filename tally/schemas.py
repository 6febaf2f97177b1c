from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, Field

from tally.errors import ConsistencyError
from tally.money import to_decimal

Money = Annotated[Decimal, BeforeValidator(to_decimal)]


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# --- Ledger records (consumed) ---

class SplitRecord(BaseModel):
    participant_id: str
    amount: Money

    model_config = {"frozen": True}


class ExpenseRecord(BaseModel):
    id: str
    group_id: str
    payer_id: str
    amount: Money
    description: str = ""
    splits: list[SplitRecord] = []

    model_config = {"frozen": True}


class SettlementRecord(BaseModel):
    id: str
    group_id: str
    payer_id: str
    recipient_id: str
    amount: Money
    status: SettlementStatus = SettlementStatus.PENDING
    note: str | None = None
    created_by: str | None = None
    expense_ids: list[str] = []
    cancel_reason: str | None = None
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 0  # bumped by the store on every write

    model_config = {"frozen": True}

    @property
    def is_effective(self) -> bool:
        return self.status in (SettlementStatus.CONFIRMED, SettlementStatus.COMPLETED)


# --- Derived values (produced) ---

class Balance(BaseModel):
    debtor_id: str
    creditor_id: str
    amount: Money

    model_config = {"frozen": True}


class SettlementSuggestion(Balance):
    pass


class SettlementProgress(BaseModel):
    total_expense_amount: Money
    settled_amount: Money
    outstanding_amount: Money
    progress_percentage: int
    is_fully_settled: bool

    model_config = {"frozen": True}


class ConsistencyReport(BaseModel):
    is_valid: bool
    total_expenses: Money
    total_splits: Money
    discrepancy: Money  # total_expenses - total_splits
    drifting_expense_ids: list[str] = []

    model_config = {"frozen": True}

    def raise_for_drift(self) -> None:
        if not self.is_valid:
            raise ConsistencyError(
                f"Split total ({self.total_splits}) does not match expense total "
                f"({self.total_expenses}), discrepancy {self.discrepancy}"
            )


class TransitionResult(BaseModel):
    settlement: SettlementRecord
    previous_status: SettlementStatus
    status: SettlementStatus
    changed_at: datetime

    model_config = {"frozen": True}


class PairSummary(BaseModel):
    participant_a: str
    participant_b: str
    net_amount: Money
    direction: str
    details: list[Balance] = []

    model_config = {"frozen": True}


class ParticipantSummary(BaseModel):
    participant_id: str
    total_owed: Money  # what this participant owes others
    total_owed_to: Money  # what others owe this participant
    net_position: Money

    model_config = {"frozen": True}


class OptimizationReport(BaseModel):
    current_balances: list[Balance]
    suggestions: list[SettlementSuggestion]
    current_transactions: int
    optimized_transactions: int
    transaction_reduction: int
    percentage_reduction: int

    model_config = {"frozen": True}


class PendingSettlements(BaseModel):
    needing_confirmation: list[SettlementRecord] = Field(default_factory=list)  # recipient must confirm
    needing_completion: list[SettlementRecord] = Field(default_factory=list)  # payer must mark paid
    awaiting_response: list[SettlementRecord] = Field(default_factory=list)  # payer waits on recipient

    @property
    def total(self) -> int:
        return len(self.needing_confirmation) + len(self.needing_completion) + len(self.awaiting_response)
