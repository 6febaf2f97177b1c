"""Settlement lifecycle: who may move a settlement between which statuses.

PENDING -> CONFIRMED -> COMPLETED, and PENDING/CONFIRMED -> CANCELLED.
COMPLETED and CANCELLED are terminal. Every function returns a new record;
records are never mutated in place.
"""

import uuid
from datetime import datetime, timezone

from tally.errors import AuthorizationError, StateConflictError, ValidationError
from tally.money import qround, to_decimal
from tally.schemas import SettlementRecord, SettlementStatus, TransitionResult

PENDING = SettlementStatus.PENDING
CONFIRMED = SettlementStatus.CONFIRMED
COMPLETED = SettlementStatus.COMPLETED
CANCELLED = SettlementStatus.CANCELLED

TRANSITIONS: dict[SettlementStatus, frozenset[SettlementStatus]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}
TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: SettlementStatus, target: SettlementStatus) -> bool:
    return target in TRANSITIONS[current]


def new_settlement(
    group_id: str,
    payer_id: str,
    recipient_id: str,
    amount,
    created_by: str,
    note: str | None = None,
    expense_ids: list[str] | None = None,
    now: datetime | None = None,
    require_party: bool = True,
) -> SettlementRecord:
    """Build a PENDING settlement.

    The creator must be one of the two parties unless require_party is off,
    which is how group-wide settle-all records the member who asked for it.
    """
    if payer_id == recipient_id:
        raise ValidationError("Cannot create settlement with yourself")
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    if require_party and created_by not in (payer_id, recipient_id):
        raise AuthorizationError("You can only create settlements involving yourself")

    return SettlementRecord(
        id=str(uuid.uuid4()),
        group_id=group_id,
        payer_id=payer_id,
        recipient_id=recipient_id,
        amount=qround(amount),
        status=PENDING,
        note=note,
        created_by=created_by,
        expense_ids=list(expense_ids or []),
        created_at=now or utcnow(),
    )


def _transition(
    record: SettlementRecord,
    target: SettlementStatus,
    now: datetime,
    **changes,
) -> TransitionResult:
    if not can_transition(record.status, target):
        raise StateConflictError(
            f"Cannot move settlement from {record.status.value} to {target.value}"
        )
    updated = record.model_copy(update={"status": target, **changes})
    return TransitionResult(
        settlement=updated,
        previous_status=record.status,
        status=target,
        changed_at=now,
    )


def confirm(record: SettlementRecord, actor_id: str, now: datetime | None = None) -> TransitionResult:
    """Recipient acknowledges receipt of the payment."""
    if actor_id != record.recipient_id:
        raise AuthorizationError("Only the settlement recipient can confirm it")
    if record.status != PENDING:
        raise StateConflictError(f"Cannot confirm settlement with status: {record.status.value}")
    now = now or utcnow()
    return _transition(record, CONFIRMED, now, confirmed_at=now)


def complete(record: SettlementRecord, actor_id: str, now: datetime | None = None) -> TransitionResult:
    """Payer marks a confirmed settlement as paid."""
    if actor_id != record.payer_id:
        raise AuthorizationError("Only the settlement payer can mark it as completed")
    if record.status != CONFIRMED:
        raise StateConflictError(
            f"Cannot complete settlement with status: {record.status.value}. "
            "Settlement must be confirmed first."
        )
    now = now or utcnow()
    return _transition(record, COMPLETED, now, completed_at=now)


def cancel(
    record: SettlementRecord,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Either party may cancel until the settlement is completed."""
    if actor_id not in (record.payer_id, record.recipient_id):
        raise AuthorizationError("You can only cancel settlements involving yourself")
    if record.status in TERMINAL_STATUSES:
        raise StateConflictError(f"Cannot cancel settlement with status: {record.status.value}")
    now = now or utcnow()
    return _transition(record, CANCELLED, now, cancelled_at=now, cancel_reason=reason)


def _ensure_editable(record: SettlementRecord, actor_id: str, action: str) -> None:
    if actor_id != record.payer_id:
        raise AuthorizationError(f"Only the settlement payer can {action} it")
    if record.status != PENDING:
        raise StateConflictError(f"Cannot {action} settlement with status: {record.status.value}")


def update(
    record: SettlementRecord,
    actor_id: str,
    amount=None,
    note: str | None = None,
) -> SettlementRecord:
    """Edit amount and/or note. Payer only, and only while still PENDING."""
    _ensure_editable(record, actor_id, "update")
    changes = {}
    if amount is not None:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        changes["amount"] = qround(amount)
    if note is not None:
        changes["note"] = note
    return record.model_copy(update=changes)


def ensure_deletable(record: SettlementRecord, actor_id: str) -> None:
    """Deletion is the payer's escape hatch for a settlement nobody acted on."""
    _ensure_editable(record, actor_id, "delete")
