import argparse
import json
import yaml
from pathlib import Path
from datetime import datetime

from flipchain.data.graph import load_base_graph
from export_run import export_chain_run

from flipchain.chain.acceptance import cut_edge_acceptance
from flipchain.chain.constraints import ContiguityConstraint, PopulationConstraint
from flipchain.chain.flip import ChainConfig, flip_chain
from flipchain.chain.partition import Partition
from flipchain.chain.scores import DistrictAggregate, num_cut_edges

"""
Single-node flip chain over a map pack, starting from a district column
in attributes.csv.

example usage from repo root:
python3 scripts/run_flip_chain.py --config config.yaml --state ny --steps 5000
"""


# ---------------------------------------------------------------------
# Config helpers (state-aware)
# ---------------------------------------------------------------------

def _resolve_pack_dir(cfg: dict, state: str | None) -> Path:
    if state:
        scfg = (cfg.get("states", {}) or {}).get(state)
        if not scfg:
            raise KeyError(f"State '{state}' not found under cfg['states'].")
        return Path(scfg["assets_dir"]).expanduser().resolve()

    paths = cfg.get("paths", {}) or {}
    data = cfg.get("data", {}) or {}

    pack_dir_raw = data.get("map_pack_dir") or paths.get("assets_dir")
    if not pack_dir_raw:
        raise KeyError("No map pack directory found.")
    return Path(pack_dir_raw).expanduser().resolve()


def _resolve_outputs_root(cfg: dict) -> Path:
    paths = cfg.get("paths", {}) or {}
    outputs_raw = paths.get("outputs_dir")
    if outputs_raw:
        return Path(outputs_raw).expanduser().resolve()
    return Path("outputs").resolve()


def _update_latest_manifest(state_outputs_root: Path, key: str, folder_name: str):
    manifest_path = state_outputs_root / "latest.json"
    if manifest_path.exists():
        latest = json.loads(manifest_path.read_text())
    else:
        latest = {}
    latest[key] = folder_name
    manifest_path.write_text(json.dumps(latest, indent=2))
    print(f"[run_flip_chain] Updated {manifest_path}", flush=True)


def _chain_config(cfg: dict, state: str | None, args) -> tuple[ChainConfig, dict]:
    """Global algos.flip_chain merged with states.<state>.algos.flip_chain, then CLI flags."""
    fc = ((cfg.get("algos", {}) or {}).get("flip_chain", {}) or {}).copy()
    if state:
        scfg = (cfg.get("states", {}) or {}).get(state, {}) or {}
        fc.update(((scfg.get("algos", {}) or {}).get("flip_chain", {}) or {}))

    chain_cfg = ChainConfig(
        num_steps=int(args.steps if args.steps is not None else fc.get("num_steps", 1000)),
        pop_tolerance=float(fc.get("pop_tolerance", 0.05)),
        no_self_loops=bool(fc.get("no_self_loops", False)),
        progress_bar=not args.no_progress,
        seed=int(args.seed if args.seed is not None else fc.get("seed", 42)),
    )
    return chain_cfg, fc


# ---------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------

def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--state", default=None)
    ap.add_argument("--steps", type=int, default=None)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--assignment", default=None, help="attributes.csv column holding the starting plan.")
    ap.add_argument("--beta", type=float, default=None, help="Cut-edge Metropolis inverse temperature.")
    ap.add_argument("--no-progress", action="store_true")
    ap.add_argument("--validate", action="store_true", help="Check partition invariants after the run.")
    args = ap.parse_args()

    with open(args.config, "r") as f:
        cfg = yaml.safe_load(f)

    pack_dir = _resolve_pack_dir(cfg, args.state)
    outputs_root = _resolve_outputs_root(cfg)
    state_outputs_root = outputs_root / (args.state or "default")
    state_outputs_root.mkdir(parents=True, exist_ok=True)

    chain_cfg, fc = _chain_config(cfg, args.state, args)

    graph = load_base_graph(pack_dir, pop_col=str(fc.get("pop_col", "weight")))

    column = args.assignment or fc.get("assignment_column", "district")
    partition = Partition.from_attribute(graph, pack_dir, column)
    print(
        f"[run_flip_chain] start plan '{column}': districts={partition.num_districts} "
        f"cut_edges={partition.num_cut_edges}",
        flush=True,
    )

    pop_constraint = PopulationConstraint.from_tolerance(graph, partition.num_districts, chain_cfg.pop_tolerance)
    cont_constraint = ContiguityConstraint()

    if not cont_constraint.check_partition(graph, partition):
        raise ValueError(f"Starting plan '{column}' has non-contiguous districts.")
    if not pop_constraint.check_partition(partition):
        raise ValueError(
            f"Starting plan '{column}' is outside the population band "
            f"[{pop_constraint.min_pop:.0f}, {pop_constraint.max_pop:.0f}]."
        )

    beta = args.beta if args.beta is not None else fc.get("beta")
    acceptance_fn = cut_edge_acceptance(float(beta)) if beta is not None else None

    scores = [DistrictAggregate("population"), num_cut_edges]
    for key in graph.attributes:
        scores.append(DistrictAggregate(key, key))

    chain_data = flip_chain(
        graph,
        partition,
        pop_constraint,
        cont_constraint,
        chain_cfg.num_steps,
        scores,
        acceptance_fn=acceptance_fn,
        no_self_loops=chain_cfg.no_self_loops,
        progress_bar=chain_cfg.progress_bar,
        rng=chain_cfg.seed,
    )

    if args.validate:
        partition.check_invariants(graph)
        print("[run_flip_chain] invariants ok", flush=True)

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    folder_name = f"flip_chain_{run_id}"
    run_dir = state_outputs_root / folder_name

    export_chain_run(
        run_dir=run_dir,
        chain_data=chain_data,
        partition=partition,
        graph=graph,
        title=f"Flip chain {chain_cfg.num_steps} steps [{args.state or pack_dir.name}]",
    )

    _update_latest_manifest(state_outputs_root, "flip_chain", folder_name)
    print("Saved:", run_dir)


if __name__ == "__main__":
    main()
