"""State-variable numbering for the Jacobian and decoupled sub-matrices.

Angles are unknown at every non-slack bus, magnitudes only at PQ buses.
The numbering is rebuilt whenever the PQ/PV/slack partition changes.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import BusType


@dataclass(frozen=True)
class StateNumbering:
    pvpq: np.ndarray       # non-slack buses, ascending
    pq: np.ndarray         # PQ buses, ascending
    angle: np.ndarray      # bus -> angle unknown position, -1 at slack
    magnitude: np.ndarray  # bus -> position among PQ unknowns, -1 elsewhere

    @property
    def n_angle(self) -> int:
        return len(self.pvpq)

    @property
    def n_magnitude(self) -> int:
        return len(self.pq)

    @property
    def size(self) -> int:
        return self.n_angle + self.n_magnitude


def number_states(classification: BusClassification) -> StateNumbering:
    types = classification.bus_types
    n = len(types)
    pvpq = np.array([i for i in range(n) if types[i] != BusType.SLACK], dtype=np.int64)
    pq = np.array([i for i in range(n) if types[i] == BusType.PQ], dtype=np.int64)

    angle = np.full(n, -1, dtype=np.int64)
    angle[pvpq] = np.arange(len(pvpq))
    magnitude = np.full(n, -1, dtype=np.int64)
    magnitude[pq] = np.arange(len(pq))

    return StateNumbering(pvpq=pvpq, pq=pq, angle=angle, magnitude=magnitude)
