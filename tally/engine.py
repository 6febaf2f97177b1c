"""BalanceEngine: the entry point the CRUD layer calls into.

Reads raw records through a LedgerReader, runs the balance pipeline, caches
per-group results and drives settlement transitions.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

import sentry_sdk

from tally import settlements as lifecycle
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
from tally.cache import ResultCache
from tally.config import EngineConfig
from tally.errors import ComputationError, NotFoundError
from tally.graph import DebtGraph
from tally.ledger import LedgerReader
from tally.money import qround
from tally.schemas import (
    Balance,
    ConsistencyReport,
    OptimizationReport,
    PairSummary,
    ParticipantSummary,
    PendingSettlements,
    SettlementProgress,
    SettlementRecord,
    SettlementStatus,
    SettlementSuggestion,
    TransitionResult,
)

logger = logging.getLogger("tally")

# Failures the deriver, overlay and optimizer can hit on malformed upstream data
PIPELINE_ERRORS = (ValueError, TypeError, ArithmeticError)


class BalanceEngine:
    def __init__(
        self,
        ledger: LedgerReader,
        config: EngineConfig | None = None,
        cache: ResultCache | None = None,
        clock: Callable[[], datetime] = lifecycle.utcnow,
    ):
        self.ledger = ledger
        self.config = config or EngineConfig()
        if cache is None and self.config.cache_enabled:
            cache = ResultCache(ttl_seconds=self.config.cache_ttl_seconds)
        self.cache = cache
        self._clock = clock

    # --- caching ---

    def _cached(self, kind: str, group_id: str, compute: Callable[[], object]):
        if self.cache is None:
            return compute()

        try:
            cached = self.cache.get(kind, group_id)
        except Exception:
            logger.warning(
                "Cache read failed, computing directly",
                extra={"extra_data": {"group_id": group_id, "kind": kind, "degraded": True}},
                exc_info=True,
            )
            return compute()
        if cached is not None:
            return cached

        value = compute()
        try:
            self.cache.set(kind, group_id, value)
        except Exception:
            logger.warning(
                "Cache write failed",
                extra={"extra_data": {"group_id": group_id, "kind": kind, "degraded": True}},
                exc_info=True,
            )
        return value

    def invalidate(self, group_id: str) -> None:
        """Drop cached results for a group. Call after any expense change too."""
        if self.cache is not None:
            self.cache.invalidate_group(group_id)

    # --- balance pipeline ---

    def _expense_graph(self, group_id: str) -> DebtGraph:
        expenses = self.ledger.expenses_for_group(group_id)
        try:
            return derive_pairwise_balances(expenses, self.config.tolerance)
        except PIPELINE_ERRORS as e:
            logger.error(
                "Expense splits could not be turned into balances",
                extra={"extra_data": {"group_id": group_id}},
                exc_info=True,
            )
            sentry_sdk.capture_exception(e)
            raise ComputationError(f"Failed to derive balances for group {group_id}") from e

    def _outstanding_graph(self, group_id: str) -> DebtGraph:
        graph = self._expense_graph(group_id)
        settlements = self.ledger.settlements_for_group(group_id)
        try:
            return apply_settlements(graph, settlements, self.config.tolerance)
        except PIPELINE_ERRORS as e:
            if not self.config.allow_degraded:
                raise ComputationError(f"Failed to apply settlements for group {group_id}") from e
            logger.warning(
                "Settlement overlay failed, serving expense-only balances",
                extra={"extra_data": {"group_id": group_id, "degraded": True}},
                exc_info=True,
            )
            sentry_sdk.capture_exception(e)
            return graph

    def expense_balances(self, group_id: str) -> list[Balance]:
        """Pairwise debts from expenses alone, before any settlement."""
        return list(self._cached("expense_balances", group_id, lambda: self._expense_graph(group_id).balances()))

    def outstanding_balances(self, group_id: str) -> list[Balance]:
        return list(self._cached("balances", group_id, lambda: self._outstanding_graph(group_id).balances()))

    def net_positions(self, group_id: str) -> dict:
        positions = compute_net_positions(self._outstanding_graph(group_id))
        return {pid: qround(pos) for pid, pos in positions.items()}

    def _compute_suggestions(self, group_id: str) -> list[SettlementSuggestion]:
        graph = self._outstanding_graph(group_id)
        try:
            positions = compute_net_positions(graph)
            return minimize_transactions(positions, self.config.tolerance, graph.components())
        except PIPELINE_ERRORS as e:
            raise ComputationError(f"Failed to compute settlement suggestions for group {group_id}") from e

    def suggestions(self, group_id: str) -> list[SettlementSuggestion]:
        return list(self._cached("suggestions", group_id, lambda: self._compute_suggestions(group_id)))

    def optimization_report(self, group_id: str) -> OptimizationReport:
        current = self.outstanding_balances(group_id)
        suggestions = self.suggestions(group_id)
        reduction = len(current) - len(suggestions)
        if current:
            ratio = Decimal(reduction) * 100 / len(current)
            percentage = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        else:
            percentage = 0
        return OptimizationReport(
            current_balances=current,
            suggestions=suggestions,
            current_transactions=len(current),
            optimized_transactions=len(suggestions),
            transaction_reduction=reduction,
            percentage_reduction=percentage,
        )

    def progress(self, group_id: str) -> SettlementProgress:
        expenses = self.ledger.expenses_for_group(group_id)
        settlements = self.ledger.settlements_for_group(group_id)
        positions = compute_net_positions(self._outstanding_graph(group_id))
        return settlement_progress(expenses, settlements, positions, self.config.tolerance)

    def is_fully_settled(self, group_id: str) -> bool:
        return self.progress(group_id).is_fully_settled

    def validate(self, group_id: str) -> ConsistencyReport:
        report = validate_consistency(self.ledger.expenses_for_group(group_id), self.config.tolerance)
        if not report.is_valid:
            logger.warning(
                "Split totals drift from expense totals",
                extra={"extra_data": {
                    "group_id": group_id,
                    "discrepancy": report.discrepancy,
                    "expense_ids": report.drifting_expense_ids,
                }},
            )
        return report

    def balance_between(self, group_id: str, participant_a: str, participant_b: str) -> PairSummary:
        return pair_summary(self._outstanding_graph(group_id), participant_a, participant_b)

    def participant_summary(self, group_id: str, participant_id: str) -> ParticipantSummary:
        return participant_summary(self._outstanding_graph(group_id), participant_id)

    # --- settlement lifecycle ---

    def _load(self, settlement_id: str) -> SettlementRecord:
        record = self.ledger.get_settlement(settlement_id)
        if record is None:
            raise NotFoundError("Settlement not found")
        return record

    def get_settlement(self, settlement_id: str) -> SettlementRecord:
        return self._load(settlement_id)

    def create_settlement(
        self,
        group_id: str,
        payer_id: str,
        recipient_id: str,
        amount,
        actor_id: str,
        note: str | None = None,
        expense_ids: list[str] | None = None,
    ) -> SettlementRecord:
        record = lifecycle.new_settlement(
            group_id, payer_id, recipient_id, amount,
            created_by=actor_id, note=note, expense_ids=expense_ids, now=self._clock(),
        )
        if record.expense_ids:
            known = {e.id for e in self.ledger.expenses_for_group(group_id)}
            for expense_id in record.expense_ids:
                if expense_id not in known:
                    raise NotFoundError(f"Expense {expense_id} not found in this group")
        return self._store(record)

    def _store(self, record: SettlementRecord) -> SettlementRecord:
        group_id = record.group_id
        stored = self.ledger.add_settlement(record)
        self.invalidate(group_id)
        logger.info(
            "Settlement created",
            extra={"extra_data": {"group_id": group_id, "settlement_id": stored.id, "amount": stored.amount}},
        )
        return stored

    def _apply(self, result: TransitionResult) -> TransitionResult:
        stored = self.ledger.save_settlement(result.settlement)
        self.invalidate(stored.group_id)
        logger.info(
            f"Settlement {result.status.value.lower()}",
            extra={"extra_data": {
                "group_id": stored.group_id,
                "settlement_id": stored.id,
                "from_status": result.previous_status.value,
                "to_status": result.status.value,
            }},
        )
        return result.model_copy(update={"settlement": stored})

    def confirm(self, settlement_id: str, actor_id: str) -> TransitionResult:
        return self._apply(lifecycle.confirm(self._load(settlement_id), actor_id, self._clock()))

    def complete(self, settlement_id: str, actor_id: str) -> TransitionResult:
        return self._apply(lifecycle.complete(self._load(settlement_id), actor_id, self._clock()))

    def cancel(self, settlement_id: str, actor_id: str, reason: str | None = None) -> TransitionResult:
        return self._apply(lifecycle.cancel(self._load(settlement_id), actor_id, reason, self._clock()))

    def update_settlement(
        self,
        settlement_id: str,
        actor_id: str,
        amount=None,
        note: str | None = None,
    ) -> SettlementRecord:
        updated = lifecycle.update(self._load(settlement_id), actor_id, amount=amount, note=note)
        stored = self.ledger.save_settlement(updated)
        self.invalidate(stored.group_id)
        return stored

    def delete_settlement(self, settlement_id: str, actor_id: str) -> None:
        record = self._load(settlement_id)
        lifecycle.ensure_deletable(record, actor_id)
        self.ledger.delete_settlement(settlement_id)
        self.invalidate(record.group_id)
        logger.info(
            "Settlement deleted",
            extra={"extra_data": {"group_id": record.group_id, "settlement_id": settlement_id}},
        )

    def settle_all(self, group_id: str, actor_id: str, note: str | None = None) -> list[SettlementRecord]:
        """Open a PENDING settlement for every current suggestion.

        actor_id is recorded as the creator even when they are not a party;
        group membership is checked by the caller.
        """
        created = []
        for suggestion in self.suggestions(group_id):
            record = lifecycle.new_settlement(
                group_id,
                suggestion.debtor_id,
                suggestion.creditor_id,
                suggestion.amount,
                created_by=actor_id,
                note=note or f"Group settlement: {suggestion.amount}",
                now=self._clock(),
                require_party=False,
            )
            created.append(self._store(record))
        logger.info(
            "Group settle-all requested",
            extra={"extra_data": {"group_id": group_id, "actor_id": actor_id, "created": len(created)}},
        )
        return created

    def complete_all(self, group_id: str, actor_id: str) -> list[TransitionResult]:
        """Mark every CONFIRMED settlement the actor pays in this group as completed."""
        confirmed = [
            s for s in self.ledger.settlements_for_group(group_id)
            if s.status == SettlementStatus.CONFIRMED and s.payer_id == actor_id
        ]
        return [self.complete(s.id, actor_id) for s in confirmed]

    def pending_for(self, group_id: str, participant_id: str) -> PendingSettlements:
        pending = PendingSettlements()
        for s in self.ledger.settlements_for_group(group_id):
            if s.status == SettlementStatus.PENDING and s.recipient_id == participant_id:
                pending.needing_confirmation.append(s)
            elif s.status == SettlementStatus.CONFIRMED and s.payer_id == participant_id:
                pending.needing_completion.append(s)
            elif s.status == SettlementStatus.PENDING and s.payer_id == participant_id:
                pending.awaiting_response.append(s)
        return pending
