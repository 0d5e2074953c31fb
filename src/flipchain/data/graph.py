from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


def build_adj_idx(unit_ids: List[str], adj_json: Dict[str, List[str]]) -> List[List[int]]:
    id_to_idx = {uid: i for i, uid in enumerate(unit_ids)}
    adj_idx: List[List[int]] = [[] for _ in unit_ids]
    for u, nbrs in adj_json.items():
        i = id_to_idx.get(u)
        if i is None:
            continue
        for v in nbrs:
            j = id_to_idx.get(v)
            if j is not None:
                adj_idx[i].append(j)
    return adj_idx


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass
class BaseGraph:
    """
    Immutable structural input for a chain.

    Edges are stored once per unordered neighbour pair (src < dst) in a fixed
    (src, dst) order; that order is what proposal sampling scans.
    """
    num_nodes: int
    num_edges: int
    edge_src: np.ndarray  # (E,)
    edge_dst: np.ndarray  # (E,)
    populations: np.ndarray  # (N,)
    total_pop: float
    adj: List[List[int]]  # neighbors as indices
    node_edges: List[List[int]]  # incident edge indices per node
    ids: List[str] = field(default_factory=list)
    attributes: Dict[str, np.ndarray] = field(default_factory=dict)

    @classmethod
    def from_edges(
        cls,
        num_nodes: int,
        edges: Iterable[Tuple[int, int]],
        populations: Sequence[float],
        attributes: Optional[Dict[str, Sequence[float]]] = None,
        ids: Optional[List[str]] = None,
    ) -> "BaseGraph":
        pop = np.asarray(populations, dtype=float).copy()
        if pop.shape != (num_nodes,):
            raise ValueError(f"populations length ({pop.shape[0]}) != num_nodes ({num_nodes})")
        if np.any(pop < 0):
            raise ValueError(f"{int(np.sum(pop < 0))} nodes have negative population")

        pairs = set()
        for u, v in edges:
            u, v = int(u), int(v)
            if not (0 <= u < num_nodes and 0 <= v < num_nodes):
                raise ValueError(f"edge ({u}, {v}) out of range for {num_nodes} nodes")
            if u == v:
                continue
            pairs.add((min(u, v), max(u, v)))
        ordered = sorted(pairs)

        edge_src = np.array([u for u, _ in ordered], dtype=int)
        edge_dst = np.array([v for _, v in ordered], dtype=int)

        adj: List[List[int]] = [[] for _ in range(num_nodes)]
        node_edges: List[List[int]] = [[] for _ in range(num_nodes)]
        for e, (u, v) in enumerate(ordered):
            adj[u].append(v)
            adj[v].append(u)
            node_edges[u].append(e)
            node_edges[v].append(e)

        attrs: Dict[str, np.ndarray] = {}
        for name, values in (attributes or {}).items():
            arr = np.asarray(values, dtype=float).copy()
            if arr.shape != (num_nodes,):
                raise ValueError(f"attribute '{name}' length ({arr.shape[0]}) != num_nodes ({num_nodes})")
            attrs[name] = _readonly(arr)

        return cls(
            num_nodes=int(num_nodes),
            num_edges=len(ordered),
            edge_src=_readonly(edge_src),
            edge_dst=_readonly(edge_dst),
            populations=_readonly(pop),
            total_pop=float(pop.sum()),
            adj=adj,
            node_edges=node_edges,
            ids=list(ids) if ids is not None else [str(i) for i in range(num_nodes)],
            attributes=attrs,
        )

    @classmethod
    def from_adjacency(
        cls,
        unit_ids: List[str],
        adj_json: Dict[str, List[str]],
        populations: Sequence[float],
        attributes: Optional[Dict[str, Sequence[float]]] = None,
    ) -> "BaseGraph":
        adj_idx = build_adj_idx(unit_ids, adj_json)
        edges = [(i, j) for i, nbrs in enumerate(adj_idx) for j in nbrs]
        return cls.from_edges(len(unit_ids), edges, populations, attributes=attributes, ids=unit_ids)

    def attribute(self, key: Optional[str]) -> np.ndarray:
        """Per-node values for `key`; None means population."""
        if key is None:
            return self.populations
        if key not in self.attributes:
            raise KeyError(f"Unknown node attribute '{key}'. Available: {sorted(self.attributes)}")
        return self.attributes[key]


def load_base_graph(
    pack_dir: str | Path,
    pop_col: str = "weight",
    attr_cols: Sequence[str] = ("dem_votes", "rep_votes"),
) -> BaseGraph:
    """
    Build a BaseGraph from a map pack directory:
      id_to_idx.json, adjacency.json, attributes.csv (unit_id + columns)
    Attribute columns that are absent from attributes.csv are skipped; the
    population column is required.
    """
    pack_dir = Path(pack_dir)
    for name in ("id_to_idx.json", "adjacency.json", "attributes.csv"):
        if not (pack_dir / name).exists():
            raise FileNotFoundError(f"Missing {name} at {pack_dir / name}")

    id_to_idx = json.loads((pack_dir / "id_to_idx.json").read_text())
    adj_json = json.loads((pack_dir / "adjacency.json").read_text())

    # Ensure attrs order matches id_to_idx order
    ids: List[str] = [""] * len(id_to_idx)
    for uid, i in id_to_idx.items():
        ids[int(i)] = str(uid)

    attrs = pd.read_csv(pack_dir / "attributes.csv")
    if "unit_id" not in attrs.columns:
        raise KeyError("attributes.csv missing 'unit_id' column.")
    if pop_col not in attrs.columns:
        raise KeyError(f"attributes.csv missing '{pop_col}'. Available: {list(attrs.columns)[:50]} ...")
    attrs["unit_id"] = attrs["unit_id"].astype(str)
    attrs = attrs.set_index("unit_id").loc[ids].reset_index()

    populations = attrs[pop_col].to_numpy(dtype=float)
    extra = {c: attrs[c].to_numpy(dtype=float) for c in attr_cols if c in attrs.columns}
    adj_json = {str(k): [str(n) for n in v] for k, v in adj_json.items()}

    graph = BaseGraph.from_adjacency(ids, adj_json, populations, attributes=extra)
    print(
        f"[graph] loaded {pack_dir.name}: nodes={graph.num_nodes} edges={graph.num_edges} "
        f"total_pop={graph.total_pop:.0f}",
        flush=True,
    )
    return graph
