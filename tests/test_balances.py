from decimal import Decimal

from conftest import make_expense, make_settlement
from tally.balances import (
    apply_settlements,
    compute_net_positions,
    derive_pairwise_balances,
    minimize_transactions,
    pair_summary,
    participant_summary,
    settlement_progress,
    validate_consistency,
)
from tally.graph import DebtGraph
from tally.schemas import SettlementStatus


def _edges(graph: DebtGraph) -> dict:
    return {(d, c): a for d, c, a in graph}


def _apply_suggestions(positions: dict, suggestions) -> dict:
    result = dict(positions)
    for s in suggestions:
        result[s.debtor_id] += s.amount
        result[s.creditor_id] -= s.amount
    return result


# --- pairwise derivation ---

def test_scenario_pairwise_balances(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    assert _edges(graph) == {
        ("B", "A"): Decimal("33.33"),
        ("C", "A"): Decimal("33.34"),
        ("C", "B"): Decimal("30.00"),
    }


def test_payer_share_is_not_a_debt():
    graph = derive_pairwise_balances([make_expense("A", "10", {"A": "10"})])
    assert len(graph) == 0


def test_same_pair_accumulates_without_netting_opposites():
    expenses = [
        make_expense("A", "20", {"B": "20"}),
        make_expense("A", "10", {"B": "10"}),
        make_expense("B", "5", {"A": "5"}),
    ]
    graph = derive_pairwise_balances(expenses)
    assert _edges(graph) == {("B", "A"): Decimal("30"), ("A", "B"): Decimal("5")}


def test_derivation_is_idempotent(scenario_expenses):
    assert derive_pairwise_balances(scenario_expenses) == derive_pairwise_balances(scenario_expenses)


def test_empty_group():
    graph = derive_pairwise_balances([])
    assert len(graph) == 0
    assert compute_net_positions(graph) == {}
    assert minimize_transactions({}) == []


# --- settlement overlay ---

def test_overlay_ignores_pending_and_cancelled(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    settlements = [
        make_settlement("B", "A", "33.33", SettlementStatus.PENDING),
        make_settlement("C", "B", "30.00", SettlementStatus.CANCELLED),
    ]
    assert apply_settlements(graph, settlements) == graph


def test_overlay_partial_and_full_settlement(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    settlements = [
        make_settlement("B", "A", "13.33", SettlementStatus.CONFIRMED),
        make_settlement("C", "B", "30.00", SettlementStatus.COMPLETED),
    ]
    outstanding = apply_settlements(graph, settlements)
    assert _edges(outstanding) == {("B", "A"): Decimal("20.00"), ("C", "A"): Decimal("33.34")}
    # input graph untouched
    assert graph.get("C", "B") == Decimal("30.00")


def test_overpayment_reverses_the_debt():
    graph = derive_pairwise_balances([make_expense("A", "50", {"B": "50"})])
    outstanding = apply_settlements(graph, [make_settlement("B", "A", "70")])
    assert _edges(outstanding) == {("A", "B"): Decimal("20")}


def test_settlement_within_tolerance_clears_debt():
    graph = derive_pairwise_balances([make_expense("A", "50", {"B": "50"})])
    outstanding = apply_settlements(graph, [make_settlement("B", "A", "49.99")])
    assert len(outstanding) == 0


# --- net positions and conservation ---

def test_scenario_net_positions(scenario_expenses):
    positions = compute_net_positions(derive_pairwise_balances(scenario_expenses))
    assert positions == {"A": Decimal("66.67"), "B": Decimal("-3.33"), "C": Decimal("-63.34")}


def test_conservation_with_settlements(scenario_expenses):
    expenses = scenario_expenses + [
        make_expense("C", "45.10", {"A": "15.03", "B": "15.03", "C": "15.04"}),
        make_expense("D", "12.00", {"A": "6.00", "D": "6.00"}),
    ]
    settlements = [
        make_settlement("B", "A", "50.00"),
        make_settlement("D", "C", "7.77", SettlementStatus.CONFIRMED),
        make_settlement("A", "D", "3.00", SettlementStatus.PENDING),
    ]
    graph = apply_settlements(derive_pairwise_balances(expenses), settlements)
    positions = compute_net_positions(graph)
    assert abs(sum(positions.values())) <= Decimal("0.01")


# --- optimizer ---

def test_scenario_suggestions(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    suggestions = minimize_transactions(compute_net_positions(graph), components=graph.components())
    assert [(s.debtor_id, s.creditor_id, s.amount) for s in suggestions] == [
        ("C", "A", Decimal("63.34")),
        ("B", "A", Decimal("3.33")),
    ]
    assert len(suggestions) < len(graph)


def test_suggestions_reproduce_net_positions(scenario_expenses):
    positions = compute_net_positions(derive_pairwise_balances(scenario_expenses))
    suggestions = minimize_transactions(positions)
    after = _apply_suggestions(positions, suggestions)
    assert all(abs(v) <= Decimal("0.01") for v in after.values())


def test_near_zero_positions_are_ignored():
    positions = {"A": Decimal("0.01"), "B": Decimal("-0.01"), "C": Decimal("5"), "D": Decimal("-5")}
    suggestions = minimize_transactions(positions)
    assert [(s.debtor_id, s.creditor_id, s.amount) for s in suggestions] == [("D", "C", Decimal("5.00"))]


def test_largest_debtor_pays_largest_creditor_first():
    positions = {
        "A": Decimal("-10"),
        "B": Decimal("-40"),
        "C": Decimal("30"),
        "D": Decimal("20"),
    }
    suggestions = minimize_transactions(positions)
    assert [(s.debtor_id, s.creditor_id, s.amount) for s in suggestions] == [
        ("B", "C", Decimal("30.00")),
        ("B", "D", Decimal("10.00")),
        ("A", "D", Decimal("10.00")),
    ]


def test_components_bound_transaction_count():
    # A owes B and C 5 each; D owes E 8. Globally greedy would cross groups.
    graph = DebtGraph()
    graph.add("A", "B", "5")
    graph.add("A", "C", "5")
    graph.add("D", "E", "8")
    positions = compute_net_positions(graph)

    suggestions = minimize_transactions(positions, components=graph.components())
    nonzero = sum(1 for p in positions.values() if p != 0)
    assert len(suggestions) <= nonzero - len(graph.components())
    assert len(suggestions) <= len(graph)
    assert {(s.debtor_id, s.creditor_id) for s in suggestions} == {("A", "B"), ("A", "C"), ("D", "E")}


def test_single_participant_and_net_zero_groups():
    single = derive_pairwise_balances([make_expense("A", "40", {"A": "40"})])
    assert minimize_transactions(compute_net_positions(single)) == []

    circular = derive_pairwise_balances([
        make_expense("A", "10", {"B": "10"}),
        make_expense("B", "10", {"C": "10"}),
        make_expense("C", "10", {"A": "10"}),
    ])
    positions = compute_net_positions(circular)
    assert all(p == 0 for p in positions.values())
    assert minimize_transactions(positions, components=circular.components()) == []


def test_round_trip_clears_all_positions(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    suggestions = minimize_transactions(compute_net_positions(graph), components=graph.components())

    settlements = [make_settlement(s.debtor_id, s.creditor_id, s.amount) for s in suggestions]
    outstanding = apply_settlements(graph, settlements)
    positions = compute_net_positions(outstanding)

    assert all(abs(p) <= Decimal("0.01") for p in positions.values())
    assert minimize_transactions(positions, components=outstanding.components()) == []
    # B->A, A->C and C->B of 30.00 each form a cycle that nets to nothing
    assert outstanding.balances() == []
    assert pair_summary(outstanding, "A", "C").direction == "Even"
    assert participant_summary(outstanding, "A").total_owed == Decimal("0.00")


def test_overlay_cancels_cycles_without_moving_positions():
    expenses = [
        make_expense("A", "30", {"B": "30"}),
        make_expense("B", "45", {"C": "45"}),
        make_expense("C", "30", {"A": "30"}),
    ]
    graph = derive_pairwise_balances(expenses)
    outstanding = apply_settlements(graph, [])
    assert _edges(outstanding) == {("C", "B"): Decimal("15")}
    assert compute_net_positions(outstanding) == {
        "C": Decimal("-15"),
        "B": Decimal("15"),
    }


# --- validator, progress, summaries ---

def test_consistency_report_valid(scenario_expenses):
    report = validate_consistency(scenario_expenses)
    assert report.is_valid
    assert report.total_expenses == Decimal("160.00")
    assert report.total_splits == Decimal("160.00")
    assert report.discrepancy == Decimal("0.00")
    assert report.drifting_expense_ids == []


def test_consistency_report_flags_drift():
    expenses = [
        make_expense("A", "100", {"A": "50", "B": "49"}, expense_id="short"),
        make_expense("A", "10", {"B": "10"}),
    ]
    report = validate_consistency(expenses)
    assert not report.is_valid
    assert report.discrepancy == Decimal("1.00")
    assert report.drifting_expense_ids == ["short"]


def test_progress(scenario_expenses):
    settlements = [
        make_settlement("C", "A", "63.34"),
        make_settlement("B", "A", "3.33", SettlementStatus.PENDING),
    ]
    graph = apply_settlements(derive_pairwise_balances(scenario_expenses), settlements)
    progress = settlement_progress(scenario_expenses, settlements, compute_net_positions(graph))
    assert progress.total_expense_amount == Decimal("160.00")
    assert progress.settled_amount == Decimal("63.34")
    assert progress.outstanding_amount == Decimal("3.33")
    assert progress.progress_percentage == 40
    assert not progress.is_fully_settled


def test_progress_empty_group():
    progress = settlement_progress([], [], {})
    assert progress.progress_percentage == 100
    assert progress.is_fully_settled
    assert progress.outstanding_amount == Decimal("0.00")


def test_pair_summary(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    summary = pair_summary(graph, "A", "B")
    assert summary.direction == "B owes A"
    assert summary.net_amount == Decimal("33.33")

    graph.add("A", "B", "33.33")
    assert pair_summary(graph, "A", "B").direction == "Even"


def test_participant_summary(scenario_expenses):
    graph = derive_pairwise_balances(scenario_expenses)
    summary = participant_summary(graph, "B")
    assert summary.total_owed == Decimal("33.33")
    assert summary.total_owed_to == Decimal("30.00")
    assert summary.net_position == Decimal("-3.33")
