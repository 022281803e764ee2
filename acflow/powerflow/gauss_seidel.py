"""Gauss-Seidel AC power flow on complex bus voltages.

Sweep over PQ buses, then PV buses, each using the latest neighbor values:

    V_i ← V_i + [(P_i - jQ_i)/conj(V_i) - I_i] / Y_ii,   I_i = Σ_j Y_ij·V_j

At PV buses Q_i is first re-estimated as -Im(conj(V_i)·I_i); after the
sweep each PV voltage is projected back onto its magnitude setpoint.
"""

from __future__ import annotations

import numpy as np

from acflow.core.exceptions import IncompatibleEditError
from acflow.network.admittance import AdmittanceMatrix
from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import NetworkModel
from acflow.powerflow.convergence import max_abs


class GaussSeidelSolver:
    """Bus-by-bus fixed-point iteration; no factorization."""

    method = "gauss_seidel"

    def __init__(
        self,
        admittance: AdmittanceMatrix,
        classification: BusClassification,
        p_spec: np.ndarray,
        q_spec: np.ndarray,
        magnitude: np.ndarray,
        angle: np.ndarray,
        setpoint: np.ndarray,
    ) -> None:
        self._y = admittance
        self.classification = classification
        self.pq = classification.pq
        self.pv = classification.pv

        self.p_spec = np.array(p_spec, dtype=np.float64)
        self.q_spec = np.array(q_spec, dtype=np.float64)
        self.setpoint = np.array(setpoint, dtype=np.float64)
        self.voltage = np.asarray(magnitude, dtype=np.float64) * np.exp(
            1j * np.asarray(angle, dtype=np.float64)
        )
        self._valid = True

    @property
    def magnitude(self) -> np.ndarray:
        return np.abs(self.voltage)

    @property
    def angle(self) -> np.ndarray:
        return np.angle(self.voltage)

    def _check_valid(self) -> None:
        if not self._valid:
            raise IncompatibleEditError("Solver was invalidated by a topology edit; rebuild it")

    def _current(self, i: int) -> complex:
        """Σ_j Y_ij·V_j, read from column i of Yᵗ."""
        neighbors, values = self._y.transpose.column(i)
        return complex(values @ self.voltage[neighbors])

    def mismatch(self) -> tuple[float, float]:
        """Max |ΔP| over PQ and PV buses, max |ΔQ| over PQ buses."""
        self._check_valid()
        apparent = self.voltage * np.conj(self._y.matrix @ self.voltage)

        non_slack = np.concatenate([self.pq, self.pv])
        active = apparent.real[non_slack] - self.p_spec[non_slack]
        reactive = apparent.imag[self.pq] - self.q_spec[self.pq]
        return max_abs(active), max_abs(reactive)

    def step(self) -> None:
        """One PQ sweep and one PV sweep followed by magnitude projection."""
        self._check_valid()
        voltage = self.voltage
        y = self._y

        for i in self.pq:
            injection = complex(self.p_spec[i], -self.q_spec[i])
            mismatch_current = injection / np.conj(voltage[i]) - self._current(i)
            voltage[i] += mismatch_current / y.self_admittance(i)

        for i in self.pv:
            current = self._current(i)
            conj_v = np.conj(voltage[i])
            injection = complex(self.p_spec[i], (conj_v * current).imag)
            voltage[i] += (injection / conj_v - current) / y.self_admittance(i)

        for i in self.pv:
            voltage[i] = self.setpoint[i] * voltage[i] / abs(voltage[i])

    def set_injections(self, p_spec: np.ndarray, q_spec: np.ndarray) -> None:
        self.p_spec[:] = p_spec
        self.q_spec[:] = q_spec

    def set_magnitude(self, bus: int, value: float) -> None:
        self.setpoint[bus] = value
        self.voltage[bus] = value * np.exp(1j * np.angle(self.voltage[bus]))

    def refresh_admittance(self, network: NetworkModel) -> bool:
        return False

    def invalidate(self) -> None:
        self._valid = False
