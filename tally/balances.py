"""Balance computation and debt simplification.

Pipeline: expenses -> pairwise debts -> settlement overlay -> net positions ->
minimized payments. Every function here is pure: same input, same output.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from tally.graph import DebtGraph
from tally.money import CENTS, ZERO, qround
from tally.schemas import (
    Balance,
    ConsistencyReport,
    ExpenseRecord,
    PairSummary,
    ParticipantSummary,
    SettlementProgress,
    SettlementRecord,
    SettlementSuggestion,
)


def derive_pairwise_balances(
    expenses: Iterable[ExpenseRecord],
    tolerance: Decimal = CENTS,
) -> DebtGraph:
    """Every non-payer split becomes a debt from that participant to the payer.

    Debts in the same direction accumulate; opposite directions are kept apart
    and only cancel out once net positions are computed.
    """
    graph = DebtGraph(tolerance)
    for expense in expenses:
        for split in expense.splits:
            if split.participant_id == expense.payer_id:
                continue
            graph.add(split.participant_id, expense.payer_id, split.amount)
    return graph


def effective_settlements(settlements: Iterable[SettlementRecord]) -> list[SettlementRecord]:
    """Only settlements the recipient has acknowledged move money."""
    return [s for s in settlements if s.is_effective]


def apply_settlements(
    graph: DebtGraph,
    settlements: Iterable[SettlementRecord],
    tolerance: Decimal | None = None,
) -> DebtGraph:
    """Subtract confirmed/completed settlements from the pairwise debts.

    The input graph is left untouched. Overpaying a debt flips the excess into
    a debt owed back to the payer. Opposite debts and directed cycles left over
    are then cancelled, so paying every suggestion leaves no balances behind.
    """
    outstanding = graph.copy()
    if tolerance is not None:
        outstanding.tolerance = tolerance
    for settlement in effective_settlements(settlements):
        outstanding.reduce(settlement.payer_id, settlement.recipient_id, settlement.amount)
    outstanding.simplify()
    return outstanding


def compute_net_positions(graph: DebtGraph) -> dict[str, Decimal]:
    """Collapse pairwise debts into one signed position per participant.

    Negative means net debtor. Positions always sum to zero.
    """
    positions: dict[str, Decimal] = {}
    for debtor, creditor, amount in graph:
        positions[debtor] = positions.get(debtor, ZERO) - amount
        positions[creditor] = positions.get(creditor, ZERO) + amount
    return positions


def _greedy_simplify(
    positions: dict[str, Decimal],
    tolerance: Decimal,
) -> list[SettlementSuggestion]:
    """Match the largest debtor with the largest creditor until one side runs out."""
    debtors = [[pid, pos] for pid, pos in positions.items() if pos < -tolerance]
    creditors = [[pid, pos] for pid, pos in positions.items() if pos > tolerance]

    # Most debt first, most credit first. Stable sorts keep ties in input order.
    debtors.sort(key=lambda x: x[1])
    creditors.sort(key=lambda x: x[1], reverse=True)

    suggestions = []
    di = 0
    ci = 0

    while di < len(debtors) and ci < len(creditors):
        debtor = debtors[di]
        creditor = creditors[ci]

        amount = min(abs(debtor[1]), creditor[1])
        if amount > tolerance:
            suggestions.append(SettlementSuggestion(
                debtor_id=debtor[0],
                creditor_id=creditor[0],
                amount=qround(amount),
            ))
            debtor[1] += amount
            creditor[1] -= amount

        if abs(debtor[1]) <= tolerance:
            di += 1
        if creditor[1] <= tolerance:
            ci += 1

    return suggestions


def minimize_transactions(
    positions: dict[str, Decimal],
    tolerance: Decimal = CENTS,
    components: Iterable[Iterable[str]] | None = None,
) -> list[SettlementSuggestion]:
    """Produce a small set of payments that clears every net position.

    The greedy pairing is not guaranteed to be optimal for every input, but it
    is a single linear scan after sorting. When components are given, each one
    is simplified on its own so payments never cross between groups of people
    who have no debts with each other.
    """
    if components is None:
        return _greedy_simplify(positions, tolerance)

    suggestions: list[SettlementSuggestion] = []
    for component in components:
        subset = {pid: positions[pid] for pid in component if pid in positions}
        suggestions.extend(_greedy_simplify(subset, tolerance))
    return suggestions


def validate_consistency(
    expenses: Iterable[ExpenseRecord],
    tolerance: Decimal = CENTS,
) -> ConsistencyReport:
    """Check that split totals reconcile with expense totals."""
    total_expenses = ZERO
    total_splits = ZERO
    drifting = []

    for expense in expenses:
        split_sum = sum((s.amount for s in expense.splits), ZERO)
        total_expenses += expense.amount
        total_splits += split_sum
        if abs(expense.amount - split_sum) >= tolerance:
            drifting.append(expense.id)

    discrepancy = total_expenses - total_splits
    return ConsistencyReport(
        is_valid=abs(discrepancy) < tolerance,
        total_expenses=qround(total_expenses),
        total_splits=qround(total_splits),
        discrepancy=qround(discrepancy),
        drifting_expense_ids=drifting,
    )


def settlement_progress(
    expenses: Iterable[ExpenseRecord],
    settlements: Iterable[SettlementRecord],
    positions: dict[str, Decimal],
    tolerance: Decimal = CENTS,
) -> SettlementProgress:
    total_expense_amount = sum((e.amount for e in expenses), ZERO)
    settled_amount = sum((s.amount for s in effective_settlements(settlements)), ZERO)
    outstanding_amount = sum((pos for pos in positions.values() if pos > tolerance), ZERO)

    if total_expense_amount > 0:
        ratio = settled_amount / total_expense_amount * 100
        progress_percentage = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        progress_percentage = 100

    return SettlementProgress(
        total_expense_amount=qround(total_expense_amount),
        settled_amount=qround(settled_amount),
        outstanding_amount=qround(outstanding_amount),
        progress_percentage=progress_percentage,
        is_fully_settled=all(abs(pos) <= tolerance for pos in positions.values()),
    )


def pair_summary(graph: DebtGraph, participant_a: str, participant_b: str) -> PairSummary:
    """Net what two participants owe each other, ignoring everyone else."""
    b_owes_a = graph.get(participant_b, participant_a)
    a_owes_b = graph.get(participant_a, participant_b)
    net = b_owes_a - a_owes_b

    details = []
    if b_owes_a > 0:
        details.append(Balance(debtor_id=participant_b, creditor_id=participant_a, amount=qround(b_owes_a)))
    if a_owes_b > 0:
        details.append(Balance(debtor_id=participant_a, creditor_id=participant_b, amount=qround(a_owes_b)))

    if abs(net) < graph.tolerance:
        direction = "Even"
    elif net > 0:
        direction = f"{participant_b} owes {participant_a}"
    else:
        direction = f"{participant_a} owes {participant_b}"

    return PairSummary(
        participant_a=participant_a,
        participant_b=participant_b,
        net_amount=qround(abs(net)),
        direction=direction,
        details=details,
    )


def participant_summary(graph: DebtGraph, participant_id: str) -> ParticipantSummary:
    total_owed = ZERO
    total_owed_to = ZERO
    for debtor, creditor, amount in graph:
        if debtor == participant_id:
            total_owed += amount
        elif creditor == participant_id:
            total_owed_to += amount

    return ParticipantSummary(
        participant_id=participant_id,
        total_owed=qround(total_owed),
        total_owed_to=qround(total_owed_to),
        net_position=qround(total_owed_to - total_owed),
    )
