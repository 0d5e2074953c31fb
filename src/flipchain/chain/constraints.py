from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Protocol

from flipchain.chain.partition import Partition
from flipchain.data.graph import BaseGraph

if TYPE_CHECKING:
    from flipchain.chain.flip import FlipProposal


# ----------------------------
# Contracts
# ----------------------------
class PopulationChecker(Protocol):
    def satisfies(self, pop_a: float, pop_b: float) -> bool: ...


class ContiguityChecker(Protocol):
    def satisfies(self, graph: BaseGraph, partition: Partition, proposal: "FlipProposal") -> bool: ...


# ----------------------------
# Population balance
# ----------------------------
@dataclass(frozen=True)
class PopulationConstraint:
    min_pop: float
    max_pop: float

    def __post_init__(self):
        if self.min_pop > self.max_pop:
            raise ValueError(f"min_pop ({self.min_pop}) > max_pop ({self.max_pop})")

    @classmethod
    def from_tolerance(cls, graph: BaseGraph, num_districts: int, tolerance: float) -> "PopulationConstraint":
        if num_districts <= 0:
            raise ValueError("num_districts must be positive")
        if tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {tolerance}")
        ideal = graph.total_pop / num_districts
        return cls(min_pop=ideal * (1 - tolerance), max_pop=ideal * (1 + tolerance))

    def satisfies(self, pop_a: float, pop_b: float) -> bool:
        return (self.min_pop <= pop_a <= self.max_pop) and (self.min_pop <= pop_b <= self.max_pop)

    def check_partition(self, partition: Partition) -> bool:
        pops = partition.dist_populations
        return bool(((pops >= self.min_pop) & (pops <= self.max_pop)).all())


# ----------------------------
# Contiguity
# ----------------------------
def district_is_contiguous(graph: BaseGraph, nodes: Iterable[int]) -> bool:
    """BFS over the subgraph induced by `nodes`. Empty sets count as contiguous."""
    members = set(nodes)
    if not members:
        return True

    start = next(iter(members))
    seen = {start}
    q = deque([start])
    while q:
        x = q.popleft()
        for y in graph.adj[x]:
            if y in members and y not in seen:
                seen.add(y)
                q.append(y)
    return len(seen) == len(members)


class ContiguityConstraint:
    """
    Rejects a flip when the origin district would be left empty or split.

    Only the moving node's neighbours inside the origin need to stay mutually
    reachable, so the search stops as soon as all of them are found.
    """

    def satisfies(self, graph: BaseGraph, partition: Partition, proposal: "FlipProposal") -> bool:
        remaining = proposal.src_nodes
        if not remaining:
            return False

        targets = [nbr for nbr in graph.adj[proposal.node] if nbr in remaining]
        if len(targets) <= 1:
            # leaf of the origin district
            return True

        pending = set(targets)
        start = targets[0]
        pending.discard(start)
        seen = {start}
        q = deque([start])
        while q and pending:
            x = q.popleft()
            for y in graph.adj[x]:
                if y in remaining and y not in seen:
                    seen.add(y)
                    pending.discard(y)
                    q.append(y)
        return not pending

    def check_partition(self, graph: BaseGraph, partition: Partition) -> bool:
        return all(district_is_contiguous(graph, nodes) for nodes in partition.dist_nodes)
