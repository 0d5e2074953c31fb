"""
Tests for exporting a finished chain run.
"""

import json

import pandas as pd

from export_run import export_chain_run
from flipchain.chain.constraints import ContiguityConstraint, PopulationConstraint
from flipchain.chain.flip import flip_chain
from flipchain.chain.scores import DistrictAggregate, num_cut_edges


def test_export_chain_run(tmp_path, grid_graph, grid_quadrants):
    pop = PopulationConstraint.from_tolerance(grid_graph, 4, 0.5)
    data = flip_chain(
        grid_graph, grid_quadrants, pop, ContiguityConstraint(), 10,
        [DistrictAggregate("population"), num_cut_edges], progress_bar=False, rng=0,
    )
    run_dir = tmp_path / "run"
    export_chain_run(run_dir=run_dir, chain_data=data, partition=grid_quadrants, graph=grid_graph, title="t")

    units = pd.read_csv(run_dir / "unit_to_district.csv")
    assert units["district"].tolist() == grid_quadrants.assignments.tolist()

    scores = pd.read_csv(run_dir / "scores.csv")
    assert scores["step"].max() == 10

    stats = json.loads((run_dir / "district_stats.json").read_text())
    assert len(stats) == 4
    assert {"population", "dem_votes", "rep_votes", "winner", "pop_deviation_pct"} <= set(stats[0])

    summary = json.loads((run_dir / "summary.json").read_text())
    assert summary["steps"] == 10
    assert summary["final_cut_edges"] == grid_quadrants.num_cut_edges
