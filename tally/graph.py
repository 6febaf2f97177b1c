"""Directed debt graph used by the balance pipeline."""

from decimal import Decimal
from typing import Iterator

from tally.money import CENTS, ZERO, qround, to_decimal
from tally.schemas import Balance


class DebtGraph:
    """Edges (debtor, creditor) -> positive amount owed.

    Self-loops and non-positive edges cannot be stored: add() rejects them and
    reduce() drops an edge once it falls to the tolerance or below.
    """

    def __init__(self, tolerance: Decimal = CENTS):
        self.tolerance = to_decimal(tolerance)
        self._edges: dict[tuple[str, str], Decimal] = {}

    def __len__(self) -> int:
        return len(self._edges)

    def __contains__(self, pair: tuple[str, str]) -> bool:
        return pair in self._edges

    def __iter__(self) -> Iterator[tuple[str, str, Decimal]]:
        for (debtor, creditor), amount in self._edges.items():
            yield debtor, creditor, amount

    def __eq__(self, other) -> bool:
        if not isinstance(other, DebtGraph):
            return NotImplemented
        return self._edges == other._edges

    def __repr__(self) -> str:
        return f"DebtGraph({len(self._edges)} edges)"

    def get(self, debtor: str, creditor: str) -> Decimal:
        return self._edges.get((debtor, creditor), ZERO)

    def add(self, debtor: str, creditor: str, amount) -> None:
        """Accumulate a debt. Zero is a no-op; same-direction debts sum."""
        amount = to_decimal(amount)
        if debtor == creditor:
            raise ValueError(f"Participant {debtor} cannot owe themselves")
        if amount < 0:
            raise ValueError(f"Debt from {debtor} to {creditor} must not be negative: {amount}")
        if amount == 0:
            return
        key = (debtor, creditor)
        self._edges[key] = self._edges.get(key, ZERO) + amount

    def reduce(self, debtor: str, creditor: str, amount) -> None:
        """Pay down debtor -> creditor by amount.

        A remainder within the tolerance removes the edge. Any overshoot beyond
        the tolerance is recorded as a reversed debt, creditor -> debtor.
        """
        amount = to_decimal(amount)
        if debtor == creditor:
            raise ValueError(f"Participant {debtor} cannot settle with themselves")
        if amount < 0:
            raise ValueError(f"Settlement from {debtor} to {creditor} must not be negative: {amount}")

        key = (debtor, creditor)
        remaining = self._edges.get(key, ZERO) - amount
        if remaining > self.tolerance:
            self._edges[key] = remaining
            return

        self._edges.pop(key, None)
        if remaining < -self.tolerance:
            self.add(creditor, debtor, -remaining)

    def net_opposites(self) -> None:
        """Collapse A->B and B->A into one edge for the larger side."""
        for key in list(self._edges):
            if key not in self._edges:
                continue
            reverse = (key[1], key[0])
            if reverse not in self._edges:
                continue
            diff = self._edges[key] - self._edges.pop(reverse)
            if diff > self.tolerance:
                self._edges[key] = diff
            else:
                del self._edges[key]
                if diff < -self.tolerance:
                    self._edges[reverse] = -diff

    def cancel_cycles(self) -> None:
        """Remove directed cycles by subtracting each cycle's smallest edge.

        Every participant on a cycle pays and receives the same amount, so net
        positions only move when a leftover within the tolerance is dropped.
        Each pass deletes at least one edge.
        """
        while True:
            cycle = self._find_cycle()
            if cycle is None:
                return
            smallest = min(self._edges[key] for key in cycle)
            for key in cycle:
                remaining = self._edges[key] - smallest
                if remaining > self.tolerance:
                    self._edges[key] = remaining
                else:
                    del self._edges[key]

    def _find_cycle(self) -> list[tuple[str, str]] | None:
        adjacency: dict[str, list[str]] = {}
        for debtor, creditor in self._edges:
            adjacency.setdefault(debtor, []).append(creditor)

        # 1: on the current path, 2: fully explored
        state: dict[str, int] = {}
        for start in adjacency:
            if start in state:
                continue
            path = [start]
            pending = [iter(adjacency[start])]
            state[start] = 1
            while pending:
                node = next(pending[-1], None)
                if node is None:
                    state[path.pop()] = 2
                    pending.pop()
                elif state.get(node) == 1:
                    nodes = path[path.index(node):]
                    return list(zip(nodes, nodes[1:] + [node]))
                elif node not in state:
                    state[node] = 1
                    path.append(node)
                    pending.append(iter(adjacency.get(node, [])))
        return None

    def simplify(self) -> None:
        """Drop debts that cancel out without changing any net position."""
        self.net_opposites()
        self.cancel_cycles()

    def copy(self) -> "DebtGraph":
        clone = DebtGraph(self.tolerance)
        clone._edges = dict(self._edges)
        return clone

    def participants(self) -> list[str]:
        """Participants in order of first appearance."""
        seen: dict[str, None] = {}
        for debtor, creditor in self._edges:
            seen.setdefault(debtor, None)
            seen.setdefault(creditor, None)
        return list(seen)

    def components(self) -> list[list[str]]:
        """Weakly connected components, ordered by first appearance."""
        adjacency: dict[str, set[str]] = {p: set() for p in self.participants()}
        for debtor, creditor in self._edges:
            adjacency[debtor].add(creditor)
            adjacency[creditor].add(debtor)

        components: list[list[str]] = []
        visited: set[str] = set()
        for start in adjacency:
            if start in visited:
                continue
            component = []
            stack = [start]
            visited.add(start)
            while stack:
                node = stack.pop()
                component.append(node)
                for neighbour in adjacency[node]:
                    if neighbour not in visited:
                        visited.add(neighbour)
                        stack.append(neighbour)
            components.append(component)
        return components

    def total(self) -> Decimal:
        return sum(self._edges.values(), ZERO)

    def balances(self) -> list[Balance]:
        """Edges as rounded Balance values, dropping any that round to zero."""
        result = []
        for debtor, creditor, amount in self:
            rounded = qround(amount)
            if rounded > 0:
                result.append(Balance(debtor_id=debtor, creditor_id=creditor, amount=rounded))
        return result

    @classmethod
    def from_balances(cls, balances, tolerance: Decimal = CENTS) -> "DebtGraph":
        graph = cls(tolerance)
        for balance in balances:
            graph.add(balance.debtor_id, balance.creditor_id, balance.amount)
        return graph
