from __future__ import annotations

import math
from typing import Callable

import numpy as np

from flipchain.chain.partition import Partition

AcceptanceFn = Callable[[Partition], float]


def always_accept(partition: Partition) -> float:
    return 1.0


def satisfies_acceptance_fn(partition: Partition, acceptance_fn: AcceptanceFn, rng: np.random.Generator) -> bool:
    """Draw u ~ U[0, 1) and accept iff u < p, where p = acceptance_fn(partition)."""
    p = float(acceptance_fn(partition))
    if not (0.0 <= p <= 1.0):
        raise ValueError(f"acceptance_fn must return a probability in [0, 1], got {p}")
    return bool(rng.random() < p)


def cut_edge_acceptance(beta: float) -> AcceptanceFn:
    """
    Metropolis rule favouring fewer cut edges:
      p = min(1, exp(-beta * (cut_new - cut_old)))

    cut_old comes from the rollback record, so this only works inside a chain
    that snapshots before committing (which the driver does whenever a custom
    acceptance function is set).
    """
    if beta < 0:
        raise ValueError(f"beta must be >= 0, got {beta}")

    def accept(partition: Partition) -> float:
        if partition.parent is None:
            raise RuntimeError("cut_edge_acceptance needs a rollback record on the partition")
        delta = partition.num_cut_edges - partition.parent.num_cut_edges
        return min(1.0, math.exp(-beta * delta))

    return accept
