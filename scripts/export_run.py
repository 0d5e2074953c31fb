from pathlib import Path
import json

import numpy as np
import pandas as pd


def export_chain_run(
    run_dir: Path,
    chain_data,
    partition,
    graph,
    title: str,
):
    run_dir.mkdir(parents=True, exist_ok=True)

    # ---- Final assignment ----
    labels = np.asarray(partition.assignments)
    if len(labels) != len(graph.ids):
        raise ValueError(f"labels length ({len(labels)}) != graph ids length ({len(graph.ids)})")

    pd.DataFrame({"unit_id": graph.ids, "district": labels.astype(int)}).to_csv(
        run_dir / "unit_to_district.csv", index=False
    )

    # ---- Score history (long format) ----
    chain_data.to_frame().to_csv(run_dir / "scores.csv", index=False)

    # ---- District stats ----
    df = pd.DataFrame({"district": labels.astype(int), "population": np.asarray(graph.populations)})
    for name, values in graph.attributes.items():
        df[name] = np.asarray(values)

    district_stats = df.groupby("district").sum().reset_index()
    ideal = graph.total_pop / max(partition.num_districts, 1)
    district_stats["pop_deviation_pct"] = (district_stats["population"] - ideal) / ideal * 100
    if {"dem_votes", "rep_votes"} <= set(district_stats.columns):
        district_stats["winner"] = district_stats.apply(
            lambda r: "Dem" if r["dem_votes"] > r["rep_votes"] else "GOP",
            axis=1,
        )

    (run_dir / "district_stats.json").write_text(
        json.dumps(district_stats.to_dict(orient="records"), indent=2)
    )
    district_stats.to_csv(run_dir / "district_stats.csv", index=False)

    summary = {
        "title": title,
        "steps": len(chain_data) - 1,
        "num_districts": int(partition.num_districts),
        "final_cut_edges": int(partition.num_cut_edges),
        "scores": [s.name for s in chain_data.scores],
    }
    (run_dir / "summary.json").write_text(json.dumps(summary, indent=2))

    print(f"[export] Exported run to: {run_dir}")
    print("   - unit_to_district.csv")
    print("   - scores.csv")
    print("   - district_stats.json")
