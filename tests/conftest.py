"""
Shared fixtures: small graphs with known structure and starting plans.
"""

import numpy as np
import pytest

from flipchain.chain.partition import Partition
from flipchain.data.graph import BaseGraph


def grid_edges(n: int):
    edges = []
    for r in range(n):
        for c in range(n):
            i = r * n + c
            if c + 1 < n:
                edges.append((i, i + 1))
            if r + 1 < n:
                edges.append((i, i + n))
    return edges


def partition_state(partition: Partition):
    """Field-for-field view of a partition that compares with ==."""
    return (
        partition.assignments.tolist(),
        partition.dist_populations.tolist(),
        [sorted(s) for s in partition.dist_nodes],
        partition.cut_edges.tolist(),
        partition.num_cut_edges,
    )


@pytest.fixture
def line_graph():
    """A-B-C-D as nodes 0-1-2-3, equal populations."""
    return BaseGraph.from_edges(4, [(0, 1), (1, 2), (2, 3)], [10, 10, 10, 10], ids=["A", "B", "C", "D"])


@pytest.fixture
def line_partition(line_graph):
    return Partition.from_labels(line_graph, [0, 0, 1, 1])


@pytest.fixture
def grid_graph():
    n = 4
    rng = np.random.default_rng(7)
    pops = rng.integers(90, 110, size=n * n)
    dem = rng.integers(20, 60, size=n * n)
    rep = rng.integers(20, 60, size=n * n)
    return BaseGraph.from_edges(
        n * n,
        grid_edges(n),
        pops,
        attributes={"dem_votes": dem, "rep_votes": rep},
    )


@pytest.fixture
def grid_halves(grid_graph):
    """Left two columns vs right two columns."""
    labels = [0 if (i % 4) < 2 else 1 for i in range(16)]
    return Partition.from_labels(grid_graph, labels)


@pytest.fixture
def grid_quadrants(grid_graph):
    labels = []
    for i in range(16):
        r, c = divmod(i, 4)
        labels.append((r // 2) * 2 + (c // 2))
    return Partition.from_labels(grid_graph, labels)
