from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from flipchain.chain.acceptance import AcceptanceFn, satisfies_acceptance_fn
from flipchain.chain.constraints import ContiguityChecker, PopulationChecker
from flipchain.chain.partition import Partition
from flipchain.chain.score_data import ChainScoreData
from flipchain.chain.scores import (
    AbstractScore,
    check_score_names,
    score_initial_partition,
    score_partition_from_proposal,
)
from flipchain.data.graph import BaseGraph

RngLike = Optional[int | np.random.Generator]


class NoCutEdgesError(ValueError):
    """Raised when a flip is requested from a plan without any cut edges."""


# ----------------------------
# Config
# ----------------------------
@dataclass
class ChainConfig:
    num_steps: int = 1_000
    pop_tolerance: float = 0.05
    no_self_loops: bool = False
    progress_bar: bool = True
    seed: Optional[int] = 42


@dataclass(frozen=True)
class FlipProposal:
    node: int
    src: int
    dst: int
    node_pop: float
    src_pop: float
    dst_pop: float
    src_nodes: FrozenSet[int]
    dst_nodes: FrozenSet[int]


def as_rng(rng: RngLike = None) -> np.random.Generator:
    """None -> fresh entropy, int -> seeded, Generator -> used as is."""
    return np.random.default_rng(rng)


# ----------------------------
# Proposals
# ----------------------------
def propose_random_flip(graph: BaseGraph, partition: Partition, rng: np.random.Generator) -> FlipProposal:
    """
    Pick a cut edge uniformly, then one of its endpoints uniformly as the node
    to move into the other endpoint's district. Nothing on `partition` changes.
    """
    if partition.num_cut_edges == 0:
        raise NoCutEdgesError("No cut edges in the districting plan")

    # k-th cut edge in edge order, k uniform in [1, num_cut_edges]
    k = int(rng.integers(1, partition.num_cut_edges + 1))
    edge_idx = int(np.flatnonzero(partition.cut_edges)[k - 1])

    edge = (int(graph.edge_src[edge_idx]), int(graph.edge_dst[edge_idx]))
    index = int(rng.integers(0, 2))
    node, other = edge[index], edge[1 - index]
    node_pop = float(graph.populations[node])

    src = int(partition.assignments[node])
    dst = int(partition.assignments[other])
    return FlipProposal(
        node=node,
        src=src,
        dst=dst,
        node_pop=node_pop,
        src_pop=float(partition.dist_populations[src]) - node_pop,
        dst_pop=float(partition.dist_populations[dst]) + node_pop,
        src_nodes=frozenset(partition.dist_nodes[src] - {node}),
        dst_nodes=frozenset(partition.dist_nodes[dst] | {node}),
    )


def is_valid(
    graph: BaseGraph,
    partition: Partition,
    pop_constraint: PopulationChecker,
    cont_constraint: ContiguityChecker,
    proposal: FlipProposal,
) -> bool:
    """Population balanced (new dst, new src) and contiguity preserved."""
    return pop_constraint.satisfies(proposal.dst_pop, proposal.src_pop) and cont_constraint.satisfies(
        graph, partition, proposal
    )


def get_valid_proposal(
    graph: BaseGraph,
    partition: Partition,
    pop_constraint: PopulationChecker,
    cont_constraint: ContiguityChecker,
    rng: np.random.Generator,
) -> FlipProposal:
    """
    Rejection-sample flips until one passes both constraints.

    There is no attempt cap: if no boundary flip can satisfy the constraints
    from the current plan this never returns. Callers with tight constraints
    need their own timeout.
    """
    proposal = propose_random_flip(graph, partition, rng)
    while not is_valid(graph, partition, pop_constraint, cont_constraint, proposal):
        proposal = propose_random_flip(graph, partition, rng)
    return proposal


# ----------------------------
# Mutation
# ----------------------------
def update_partition(
    partition: Partition,
    graph: BaseGraph,
    proposal: FlipProposal,
    copy_parent: bool = False,
) -> None:
    """
    Commit `proposal` in place. With copy_parent, a one-level rollback record
    is stored on partition.parent first; otherwise any older record is dropped.
    """
    if int(partition.assignments[proposal.node]) != proposal.src:
        raise ValueError(
            f"stale proposal: node {proposal.node} is in district "
            f"{int(partition.assignments[proposal.node])}, not {proposal.src}"
        )

    if copy_parent:
        undo = partition.record_undo(proposal.node, proposal.src, proposal.dst)
    else:
        undo = None
        partition.parent = None

    partition.dist_populations[proposal.src] = proposal.src_pop
    partition.dist_populations[proposal.dst] = proposal.dst_pop

    partition.assignments[proposal.node] = proposal.dst

    partition.dist_nodes[proposal.src].remove(proposal.node)
    partition.dist_nodes[proposal.dst].add(proposal.node)

    changed = partition.update_cut_edges(graph, proposal.node)
    if undo is not None:
        undo.changed_edges = changed


# ----------------------------
# Chain
# ----------------------------
class FlipChain:
    """
    Pull-driven flip chain yielding (partition, score_vals) once per completed
    step. `partition` is the same mutating object every time; copy it before
    pulling the next value if you need to keep a given step.

    With a custom acceptance function, a rejected flip is rolled back. By
    default the rolled-back state still counts as a step (a self-loop). With
    no_self_loops=True the step slot is retried instead, which never ends if
    the acceptance function can never be satisfied.
    """

    def __init__(
        self,
        graph: BaseGraph,
        partition: Partition,
        pop_constraint: PopulationChecker,
        cont_constraint: ContiguityChecker,
        num_steps: int,
        scores: List[AbstractScore],
        *,
        acceptance_fn: Optional[AcceptanceFn] = None,
        no_self_loops: bool = False,
        progress_bar: bool = True,
        rng: RngLike = None,
    ):
        if not isinstance(num_steps, (int, np.integer)) or isinstance(num_steps, bool) or num_steps < 0:
            raise ValueError(f"num_steps must be a non-negative int, got {num_steps!r}")
        check_score_names(scores)

        self.graph = graph
        self.partition = partition
        self.pop_constraint = pop_constraint
        self.cont_constraint = cont_constraint
        self.num_steps = int(num_steps)
        self.scores = list(scores)
        self.acceptance_fn = acceptance_fn
        self.custom_acceptance = acceptance_fn is not None
        self.no_self_loops = bool(no_self_loops)
        self.rng = as_rng(rng)

        self.steps_taken = 0
        self.self_loops = 0
        self.rejections = 0

        self._bar = tqdm(total=self.num_steps, desc="flip chain", disable=not progress_bar)

    def __iter__(self) -> "FlipChain":
        return self

    def __len__(self) -> int:
        return self.num_steps

    def has_next(self) -> bool:
        return self.steps_taken < self.num_steps

    def __next__(self) -> Tuple[Partition, Dict[str, Any]]:
        if not self.has_next():
            self._bar.close()
            raise StopIteration

        while True:
            proposal = get_valid_proposal(
                self.graph, self.partition, self.pop_constraint, self.cont_constraint, self.rng
            )
            update_partition(self.partition, self.graph, proposal, copy_parent=self.custom_acceptance)
            if self.custom_acceptance and not satisfies_acceptance_fn(self.partition, self.acceptance_fn, self.rng):
                self.partition.rollback()
                self.rejections += 1
                if self.no_self_loops:
                    continue
                self.self_loops += 1
            break

        score_vals = score_partition_from_proposal(self.graph, self.partition, proposal, self.scores)
        self.steps_taken += 1
        self._bar.update(1)
        if not self.has_next():
            self._bar.close()
        return self.partition, score_vals


def flip_chain_iter(
    graph: BaseGraph,
    partition: Partition,
    pop_constraint: PopulationChecker,
    cont_constraint: ContiguityChecker,
    num_steps: int,
    scores: List[AbstractScore],
    *,
    acceptance_fn: Optional[AcceptanceFn] = None,
    no_self_loops: bool = False,
    progress_bar: bool = True,
    rng: RngLike = None,
) -> FlipChain:
    return FlipChain(
        graph,
        partition,
        pop_constraint,
        cont_constraint,
        num_steps,
        scores,
        acceptance_fn=acceptance_fn,
        no_self_loops=no_self_loops,
        progress_bar=progress_bar,
        rng=rng,
    )


def flip_chain(
    graph: BaseGraph,
    partition: Partition,
    pop_constraint: PopulationChecker,
    cont_constraint: ContiguityChecker,
    num_steps: int,
    scores: List[AbstractScore],
    *,
    acceptance_fn: Optional[AcceptanceFn] = None,
    no_self_loops: bool = False,
    progress_bar: bool = True,
    rng: RngLike = None,
) -> ChainScoreData:
    """
    Run the chain to completion and return its score history: the initial
    plan's scores at step 0, then one entry per step (num_steps + 1 total).
    `partition` is left in its final state.
    """
    chain = flip_chain_iter(
        graph,
        partition,
        pop_constraint,
        cont_constraint,
        num_steps,
        scores,
        acceptance_fn=acceptance_fn,
        no_self_loops=no_self_loops,
        progress_bar=progress_bar,
        rng=rng,
    )

    first_scores = score_initial_partition(graph, partition, chain.scores)
    chain_scores = ChainScoreData(list(chain.scores), [first_scores])

    print(
        f"[flip] Starting chain: steps={num_steps} districts={partition.num_districts} "
        f"cut_edges={partition.num_cut_edges} custom_acceptance={chain.custom_acceptance}",
        flush=True,
    )

    for _, score_vals in chain:
        chain_scores.step_values.append(score_vals)

    print(
        f"[flip] Done: steps={chain.steps_taken} self_loops={chain.self_loops} "
        f"rejections={chain.rejections} final_cut_edges={partition.num_cut_edges}",
        flush=True,
    )
    return chain_scores
