import numpy as np
import pandas as pd
from typing import List


class ConvergenceHistory:
    """
    Objective trajectory of a fit: one entry per outer iteration,
    iteration 0 being the starting point. ``times`` are cumulative seconds.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.objective: List[float] = []
        self.times: List[float] = []
        self.iterations = 0

    def update(self, dt: float, obj: float) -> None:
        t = self.times[-1] + float(dt) if self.times else float(dt)
        self.times.append(t)
        self.objective.append(float(obj))
        self.iterations = len(self.objective) - 1

    def last_objective(self) -> float:
        if not self.objective:
            raise IndexError("convergence history is empty")
        return self.objective[-1]

    def second_last_objective(self) -> float:
        if len(self.objective) < 2:
            raise IndexError("convergence history has fewer than two entries")
        return self.objective[-2]

    def __len__(self) -> int:
        return len(self.objective)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "iteration": np.arange(len(self.objective)),
                "time": self.times,
                "objective": self.objective,
            }
        )

    def __repr__(self) -> str:
        last = f"{self.objective[-1]:.6e}" if self.objective else "n/a"
        return (
            f"ConvergenceHistory(name='{self.name}', entries={len(self)}, "
            f"last_objective={last})"
        )
