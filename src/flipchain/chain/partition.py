from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from flipchain.data.graph import BaseGraph


@dataclass
class FlipUndo:
    """
    Everything one flip touched, enough to restore the pre-flip state exactly.
    Holds no link to any earlier record, so at most one level is kept.
    """
    node: int
    src: int
    dst: int
    src_pop: float
    dst_pop: float
    num_cut_edges: int
    changed_edges: List[int] = field(default_factory=list)


@dataclass
class Partition:
    num_districts: int
    assignments: np.ndarray  # (N,) district id per node
    dist_populations: np.ndarray  # (K,)
    dist_nodes: List[Set[int]]
    cut_edges: np.ndarray  # (E,) bool
    num_cut_edges: int
    parent: Optional[FlipUndo] = None

    @classmethod
    def from_labels(
        cls,
        graph: BaseGraph,
        labels,
        num_districts: Optional[int] = None,
    ) -> "Partition":
        assignments = np.asarray(labels, dtype=int).copy()
        if assignments.shape != (graph.num_nodes,):
            raise ValueError(f"labels length ({assignments.size}) != graph nodes ({graph.num_nodes})")
        if num_districts is None:
            num_districts = int(assignments.max()) + 1 if assignments.size else 0
        bad = (assignments < 0) | (assignments >= num_districts)
        if np.any(bad):
            raise ValueError(f"{int(bad.sum())} labels fall outside [0..{num_districts - 1}]")

        pop = np.zeros(num_districts, dtype=float)
        np.add.at(pop, assignments, graph.populations)

        dist_nodes: List[Set[int]] = [set() for _ in range(num_districts)]
        for i, d in enumerate(assignments.tolist()):
            dist_nodes[d].add(i)

        cut = assignments[graph.edge_src] != assignments[graph.edge_dst]
        return cls(
            num_districts=int(num_districts),
            assignments=assignments,
            dist_populations=pop,
            dist_nodes=dist_nodes,
            cut_edges=cut,
            num_cut_edges=int(cut.sum()),
        )

    @classmethod
    def from_attribute(cls, graph: BaseGraph, pack_dir: str | Path, column: str) -> "Partition":
        """
        Read pack_dir/attributes.csv, use `column` as district assignment,
        and remap unique values -> [0..K-1] in sorted order.
        """
        attrs_path = Path(pack_dir) / "attributes.csv"
        if not attrs_path.exists():
            raise FileNotFoundError(f"Missing {attrs_path}")

        df = pd.read_csv(attrs_path)
        if column not in df.columns:
            raise KeyError(f"attributes.csv missing '{column}'. Available: {list(df.columns)[:50]} ...")
        if "unit_id" in df.columns:
            df["unit_id"] = df["unit_id"].astype(str)
            df = df.set_index("unit_id").loc[graph.ids].reset_index()

        values = df[column].replace("", np.nan)
        if values.isna().any():
            raise ValueError(f"{int(values.isna().sum())} rows have missing {column}. Fix data or pack build.")

        # common cases: "17", 17, "17.0"
        values = values.astype(str).str.strip().str.replace(r"\.0$", "", regex=True)
        if values.str.fullmatch(r"-?\d+").all():
            values = values.astype(int)
        uniq = sorted(pd.unique(values))
        value_to_label = {v: i for i, v in enumerate(uniq)}
        labels = np.array([value_to_label[v] for v in values], dtype=int)
        return cls.from_labels(graph, labels, num_districts=len(uniq))

    def copy(self) -> "Partition":
        return Partition(
            num_districts=self.num_districts,
            assignments=self.assignments.copy(),
            dist_populations=self.dist_populations.copy(),
            dist_nodes=[set(s) for s in self.dist_nodes],
            cut_edges=self.cut_edges.copy(),
            num_cut_edges=self.num_cut_edges,
            parent=None,
        )

    def record_undo(self, node: int, src: int, dst: int) -> FlipUndo:
        self.parent = FlipUndo(
            node=int(node),
            src=int(src),
            dst=int(dst),
            src_pop=float(self.dist_populations[src]),
            dst_pop=float(self.dist_populations[dst]),
            num_cut_edges=int(self.num_cut_edges),
        )
        return self.parent

    def update_cut_edges(self, graph: BaseGraph, node: int) -> List[int]:
        """Re-evaluate only the edges incident to `node`; returns the ones that changed."""
        changed: List[int] = []
        a = self.assignments
        for e in graph.node_edges[node]:
            is_cut = bool(a[graph.edge_src[e]] != a[graph.edge_dst[e]])
            if is_cut != bool(self.cut_edges[e]):
                self.cut_edges[e] = is_cut
                self.num_cut_edges += 1 if is_cut else -1
                changed.append(int(e))
        return changed

    def rollback(self) -> None:
        """Restore the state held in `parent` and clear it."""
        undo = self.parent
        if undo is None:
            raise RuntimeError("No rollback point recorded on this partition")

        self.assignments[undo.node] = undo.src
        self.dist_populations[undo.src] = undo.src_pop
        self.dist_populations[undo.dst] = undo.dst_pop
        self.dist_nodes[undo.dst].discard(undo.node)
        self.dist_nodes[undo.src].add(undo.node)
        for e in undo.changed_edges:
            self.cut_edges[e] = not self.cut_edges[e]
        self.num_cut_edges = undo.num_cut_edges
        self.parent = None

    def brute_force_cut_edges(self, graph: BaseGraph) -> Tuple[np.ndarray, int]:
        flags = self.assignments[graph.edge_src] != self.assignments[graph.edge_dst]
        return flags, int(flags.sum())

    def check_invariants(self, graph: BaseGraph, atol: float = 1e-6) -> None:
        if not np.isclose(float(self.dist_populations.sum()), graph.total_pop, atol=atol):
            raise ValueError(
                f"population not conserved: districts sum to {self.dist_populations.sum():.3f}, "
                f"graph total is {graph.total_pop:.3f}"
            )

        expected = np.zeros(self.num_districts, dtype=float)
        np.add.at(expected, self.assignments, graph.populations)
        if not np.allclose(expected, self.dist_populations, atol=atol):
            bad = np.where(~np.isclose(expected, self.dist_populations, atol=atol))[0]
            raise ValueError(f"district populations out of sync for districts {bad.tolist()}")

        flags, count = self.brute_force_cut_edges(graph)
        if count != self.num_cut_edges or not np.array_equal(flags, self.cut_edges):
            raise ValueError(f"cut edge bookkeeping off: tracked {self.num_cut_edges}, actual {count}")

        seen = 0
        for d, nodes in enumerate(self.dist_nodes):
            seen += len(nodes)
            for i in nodes:
                if int(self.assignments[i]) != d:
                    raise ValueError(f"node {i} listed under district {d} but assigned {int(self.assignments[i])}")
        if seen != graph.num_nodes:
            raise ValueError(f"district node sets cover {seen} entries, graph has {graph.num_nodes} nodes")
