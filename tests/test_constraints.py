"""
Unit tests for population and contiguity constraints and acceptance rules.
"""

import math

import numpy as np
import pytest

from flipchain.chain.acceptance import always_accept, cut_edge_acceptance, satisfies_acceptance_fn
from flipchain.chain.constraints import ContiguityConstraint, PopulationConstraint, district_is_contiguous
from flipchain.chain.flip import FlipProposal, update_partition
from flipchain.chain.partition import Partition
from flipchain.data.graph import BaseGraph


@pytest.fixture
def line5():
    return BaseGraph.from_edges(5, [(0, 1), (1, 2), (2, 3), (3, 4)], [1, 1, 1, 1, 1])


class TestPopulationConstraint:
    """Test the tolerance band."""

    def test_band_is_closed(self):
        c = PopulationConstraint(min_pop=9.0, max_pop=11.0)
        assert c.satisfies(9.0, 11.0)
        assert not c.satisfies(8.99, 10.0)
        assert not c.satisfies(10.0, 11.01)

    def test_from_tolerance(self, line_graph):
        c = PopulationConstraint.from_tolerance(line_graph, 2, 0.5)
        assert c.min_pop == pytest.approx(10.0)
        assert c.max_pop == pytest.approx(30.0)

    def test_invalid_arguments(self, line_graph):
        with pytest.raises(ValueError):
            PopulationConstraint.from_tolerance(line_graph, 0, 0.1)
        with pytest.raises(ValueError):
            PopulationConstraint.from_tolerance(line_graph, 2, -0.1)
        with pytest.raises(ValueError):
            PopulationConstraint(min_pop=5.0, max_pop=1.0)

    def test_check_partition(self, line_graph, line_partition):
        assert PopulationConstraint.from_tolerance(line_graph, 2, 0.0).check_partition(line_partition)
        assert not PopulationConstraint(min_pop=25.0, max_pop=30.0).check_partition(line_partition)


class TestContiguityConstraint:
    """Test flips that would split or empty the origin district."""

    def _proposal(self, partition, node, dst):
        src = int(partition.assignments[node])
        return FlipProposal(
            node=node,
            src=src,
            dst=dst,
            node_pop=1.0,
            src_pop=0.0,
            dst_pop=0.0,
            src_nodes=frozenset(partition.dist_nodes[src] - {node}),
            dst_nodes=frozenset(partition.dist_nodes[dst] | {node}),
        )

    def test_split_rejected(self, line5):
        p = Partition.from_labels(line5, [0, 0, 0, 1, 1])
        assert not ContiguityConstraint().satisfies(line5, p, self._proposal(p, 1, 1))

    def test_leaf_accepted(self, line5):
        p = Partition.from_labels(line5, [0, 0, 0, 1, 1])
        assert ContiguityConstraint().satisfies(line5, p, self._proposal(p, 2, 1))

    def test_emptying_district_rejected(self, line5):
        p = Partition.from_labels(line5, [0, 1, 1, 1, 1])
        assert not ContiguityConstraint().satisfies(line5, p, self._proposal(p, 0, 1))

    def test_cycle_stays_connected(self, grid_graph, grid_halves):
        # node 5 sits inside the left half with neighbours 1, 4, 9 in district 0
        # that stay connected around it
        p = grid_halves
        assert ContiguityConstraint().satisfies(grid_graph, p, self._proposal(p, 5, 1))

    def test_corner_cut_rejected(self):
        # district {0,1,2} where 1 is the only link from 0 to the rest
        g = BaseGraph.from_edges(4, [(0, 1), (1, 2), (1, 3), (2, 3)], [1, 1, 1, 1])
        p = Partition.from_labels(g, [0, 0, 0, 1])
        assert not ContiguityConstraint().satisfies(g, p, self._proposal(p, 1, 1))
        assert ContiguityConstraint().satisfies(g, p, self._proposal(p, 2, 1))

    def test_district_is_contiguous(self, line5):
        assert district_is_contiguous(line5, {0, 1, 2})
        assert not district_is_contiguous(line5, {0, 2})
        assert district_is_contiguous(line5, set())

    def test_check_partition(self, line5):
        assert ContiguityConstraint().check_partition(line5, Partition.from_labels(line5, [0, 0, 1, 1, 1]))
        assert not ContiguityConstraint().check_partition(line5, Partition.from_labels(line5, [0, 1, 0, 1, 1]))


class TestAcceptance:
    """Test acceptance probability handling."""

    def test_always_accept(self, line_partition):
        assert always_accept(line_partition) == 1.0

    def test_zero_and_one(self, line_partition):
        rng = np.random.default_rng(0)
        assert not any(satisfies_acceptance_fn(line_partition, lambda p: 0.0, rng) for _ in range(100))
        assert all(satisfies_acceptance_fn(line_partition, lambda p: 1.0, rng) for _ in range(100))

    def test_probability_out_of_range(self, line_partition):
        rng = np.random.default_rng(0)
        with pytest.raises(ValueError, match="probability"):
            satisfies_acceptance_fn(line_partition, lambda p: 1.5, rng)
        with pytest.raises(ValueError):
            satisfies_acceptance_fn(line_partition, lambda p: -0.1, rng)

    def test_half_probability_is_roughly_half(self, line_partition):
        rng = np.random.default_rng(1)
        hits = sum(satisfies_acceptance_fn(line_partition, lambda p: 0.5, rng) for _ in range(2000))
        assert 850 < hits < 1150

    def test_cut_edge_acceptance(self, line_graph, line_partition):
        accept = cut_edge_acceptance(beta=0.7)
        # moving B into the right district leaves A-B as the only cut edge: delta 0
        p1 = FlipProposal(1, 0, 1, 10.0, 10.0, 30.0, frozenset({0}), frozenset({1, 2, 3}))
        update_partition(line_partition, line_graph, p1, copy_parent=True)
        assert accept(line_partition) == 1.0

    def test_cut_edge_acceptance_rewards_and_penalises(self):
        accept = cut_edge_acceptance(beta=2.0)

        g = BaseGraph.from_edges(4, [(0, 1), (1, 2), (2, 3), (1, 3)], [1, 1, 1, 1])
        p = Partition.from_labels(g, [0, 0, 1, 1])
        # node 1 -> district 1 cuts 0-1 and heals 1-2 and 1-3
        prop = FlipProposal(1, 0, 1, 1.0, 1.0, 3.0, frozenset({0}), frozenset({1, 2, 3}))
        update_partition(p, g, prop, copy_parent=True)
        assert p.num_cut_edges == 1
        assert accept(p) == 1.0

        path = BaseGraph.from_edges(3, [(0, 1), (1, 2)], [1, 1, 1])
        q = Partition.from_labels(path, [0, 1, 1])
        # node 2 -> district 0 adds the cut edge 1-2
        prop2 = FlipProposal(2, 1, 0, 1.0, 1.0, 2.0, frozenset({1}), frozenset({0, 2}))
        update_partition(q, path, prop2, copy_parent=True)
        assert q.num_cut_edges == 2
        assert accept(q) == pytest.approx(math.exp(-2.0))

    def test_cut_edge_acceptance_needs_record(self, line_partition):
        with pytest.raises(RuntimeError):
            cut_edge_acceptance(1.0)(line_partition)

    def test_negative_beta(self):
        with pytest.raises(ValueError):
            cut_edge_acceptance(-1.0)
