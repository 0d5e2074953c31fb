from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Set

import numpy as np

from flipchain.chain.partition import Partition
from flipchain.data.graph import BaseGraph

if TYPE_CHECKING:
    from flipchain.chain.flip import FlipProposal

STEP_DISTS = "step_dists"


class AbstractScore:
    """
    One value (or one value per district) captured at every chain step.

    `initial` sees the whole plan. `step` receives the proposal that produced
    the current state; district-level scores use it to recompute only the two
    districts the flip touched.
    """
    name: str
    per_district: bool = False

    def initial(self, graph: BaseGraph, partition: Partition) -> Any:
        raise NotImplementedError

    def step(self, graph: BaseGraph, partition: Partition, proposal: "FlipProposal") -> Any:
        raise NotImplementedError


class PlanScore(AbstractScore):
    def __init__(self, name: str, fn: Callable[[BaseGraph, Partition], Any]):
        self.name = name
        self.fn = fn

    def initial(self, graph, partition):
        return self.fn(graph, partition)

    def step(self, graph, partition, proposal):
        return self.fn(graph, partition)

    def __repr__(self) -> str:
        return f"PlanScore({self.name!r})"


class DistrictScore(AbstractScore):
    per_district = True

    def __init__(self, name: str, fn: Callable[[BaseGraph, Set[int]], float]):
        self.name = name
        self.fn = fn

    def _eval(self, graph: BaseGraph, partition: Partition, districts: Sequence[int]) -> np.ndarray:
        return np.array([float(self.fn(graph, partition.dist_nodes[d])) for d in districts], dtype=float)

    def initial(self, graph, partition):
        return self._eval(graph, partition, range(partition.num_districts))

    def step(self, graph, partition, proposal):
        return self._eval(graph, partition, (proposal.src, proposal.dst))

    def __repr__(self) -> str:
        return f"DistrictScore({self.name!r})"


class DistrictAggregate(AbstractScore):
    """Per-district sum of a node attribute (population when key is None)."""
    per_district = True

    def __init__(self, name: str, key: Optional[str] = None):
        self.name = name
        self.key = key

    def _eval(self, graph: BaseGraph, partition: Partition, districts: Sequence[int]) -> np.ndarray:
        values = graph.attribute(self.key)
        out = np.zeros(len(districts), dtype=float)
        for k, d in enumerate(districts):
            nodes = partition.dist_nodes[d]
            if nodes:
                out[k] = float(values[list(nodes)].sum())
        return out

    def initial(self, graph, partition):
        return self._eval(graph, partition, range(partition.num_districts))

    def step(self, graph, partition, proposal):
        return self._eval(graph, partition, (proposal.src, proposal.dst))

    def __repr__(self) -> str:
        return f"DistrictAggregate({self.name!r}, key={self.key!r})"


def _num_cut_edges(graph: BaseGraph, partition: Partition) -> int:
    return int(partition.num_cut_edges)


num_cut_edges = PlanScore("num_cut_edges", _num_cut_edges)


def check_score_names(scores: List[AbstractScore]) -> None:
    names = [s.name for s in scores]
    if STEP_DISTS in names:
        raise ValueError(f"'{STEP_DISTS}' is reserved and cannot be used as a score name")
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"duplicate score names: {dupes}")


def score_initial_partition(graph: BaseGraph, partition: Partition, scores: List[AbstractScore]) -> Dict[str, Any]:
    snapshot: Dict[str, Any] = {STEP_DISTS: None}
    for score in scores:
        snapshot[score.name] = score.initial(graph, partition)
    return snapshot


def score_partition_from_proposal(
    graph: BaseGraph,
    partition: Partition,
    proposal: "FlipProposal",
    scores: List[AbstractScore],
) -> Dict[str, Any]:
    snapshot: Dict[str, Any] = {STEP_DISTS: (int(proposal.src), int(proposal.dst))}
    for score in scores:
        snapshot[score.name] = score.step(graph, partition, proposal)
    return snapshot
