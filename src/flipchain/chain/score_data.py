from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np
import pandas as pd

from flipchain.chain.scores import STEP_DISTS, AbstractScore


@dataclass
class ChainScoreData:
    """
    Score history of one chain run.

    step_values[0] holds full initial values; every later entry holds plan
    scores in full and district scores only for the two districts named in
    its "step_dists" entry.
    """
    scores: List[AbstractScore]
    step_values: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.step_values)

    def _score(self, name: str) -> AbstractScore:
        for s in self.scores:
            if s.name == name:
                return s
        raise KeyError(f"No score named '{name}'. Available: {[s.name for s in self.scores]}")

    def get_score_values(self, name: str) -> np.ndarray:
        score = self._score(name)
        if not self.step_values:
            return np.array([])

        if not score.per_district:
            return np.asarray([vals[name] for vals in self.step_values])

        current = np.asarray(self.step_values[0][name], dtype=float).copy()
        rows = [current.copy()]
        for vals in self.step_values[1:]:
            src, dst = vals[STEP_DISTS]
            current[src], current[dst] = vals[name]
            rows.append(current.copy())
        return np.vstack(rows)

    def get_scores_at_step(self, step: int) -> Dict[str, Any]:
        if not 0 <= step < len(self.step_values):
            raise IndexError(f"step {step} out of range [0..{len(self.step_values) - 1}]")
        out: Dict[str, Any] = {}
        for s in self.scores:
            values = self.get_score_values(s.name)
            out[s.name] = values[step]
        return out

    def to_frame(self) -> pd.DataFrame:
        """Long format: step, score, district (-1 for plan scores), value."""
        records = []
        for s in self.scores:
            values = self.get_score_values(s.name)
            if s.per_district:
                for step, row in enumerate(values):
                    for d, v in enumerate(row):
                        records.append({"step": step, "score": s.name, "district": d, "value": float(v)})
            else:
                for step, v in enumerate(values):
                    records.append({"step": step, "score": s.name, "district": -1, "value": v})
        return pd.DataFrame.from_records(records, columns=["step", "score", "district", "value"])
