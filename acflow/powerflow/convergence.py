"""Convergence bookkeeping shared by every power-flow method."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


def max_abs(values: np.ndarray) -> float:
    """Maximum absolute value; 0.0 for an empty array."""
    return float(np.max(np.abs(values), initial=0.0))


@dataclass
class ConvergenceMonitor:
    """Tracks the stopping statistic and the iteration budget.

    The cap is checked once per outer iteration; a step is never interrupted.
    """
    tolerance: float
    max_iterations: int
    iterations: int = 0
    active: float = math.inf
    reactive: float = math.inf

    @property
    def statistic(self) -> float:
        return max(self.active, self.reactive)

    @property
    def converged(self) -> bool:
        return self.statistic < self.tolerance

    @property
    def exhausted(self) -> bool:
        return self.iterations >= self.max_iterations

    def record(self, active: float, reactive: float) -> tuple[float, float]:
        self.active = active
        self.reactive = reactive
        return active, reactive

    def advance(self) -> int:
        self.iterations += 1
        return self.iterations

    def reset(self) -> None:
        self.iterations = 0
        self.active = math.inf
        self.reactive = math.inf
