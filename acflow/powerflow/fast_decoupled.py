"""Fast-decoupled AC power flow, BX and XB variants.

Two constant real matrices replace the Jacobian:

    B'  · Δθ = ΔP / V   (non-slack buses)
    B'' · ΔV = ΔQ / V   (PQ buses)

Per in-service branch with series r + jx, shift φ and tap τ:

    variant   B' conductance / susceptance      B'' susceptance
    BX        r/(r²+x²)  /  -x/(r²+x²)          -1/x
    XB        0          /  -1/x                -x/(r²+x²)

B' rotates the series term by the phase shift and ignores the tap; B''
scales by the tap ratio, takes half the charging susceptance at each end
and the bus shunt susceptance at PQ buses. Both are factorized once.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from acflow.core.exceptions import ConfigurationError, IncompatibleEditError
from acflow.network.admittance import AdmittanceMatrix
from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import NetworkModel
from acflow.network.sparse import CompressedColumn
from acflow.powerflow.convergence import max_abs
from acflow.powerflow.factorization import Factorization, LinearSolver, factorize
from acflow.powerflow.numbering import StateNumbering, number_states

logger = logging.getLogger(__name__)


class DecoupledVariant(str, Enum):
    BX = "bx"
    XB = "xb"


def build_decoupled_matrices(
    network: NetworkModel,
    classification: BusClassification,
    numbering: StateNumbering,
    variant: DecoupledVariant,
) -> tuple[CompressedColumn, CompressedColumn]:
    """Assemble the constant B' (angle) and B'' (magnitude) matrices."""
    variant = DecoupledVariant(variant)
    slack = classification.slack
    pvpq = numbering.angle
    pq = numbering.magnitude

    a_rows: list[int] = []
    a_cols: list[int] = []
    a_vals: list[float] = []
    r_rows: list[int] = []
    r_cols: list[int] = []
    r_vals: list[float] = []

    def add(rows, cols, vals, i, j, value):
        rows.append(i)
        cols.append(j)
        vals.append(value)

    for br in network.branches:
        if not br.in_service:
            continue
        f, t = br.from_bus, br.to_bus
        r, x = br.r_pu, br.x_pu
        if abs(x) < 1e-12:
            raise ConfigurationError(
                f"Branch '{br.name}' has zero reactance; the decoupled matrices need 1/x"
            )
        z2 = r ** 2 + x ** 2
        cos_s = np.cos(br.shift_rad)
        sin_s = np.sin(br.shift_rad)

        if variant == DecoupledVariant.BX:
            gmk, bmk = r / z2, -x / z2
        else:
            gmk, bmk = 0.0, -1.0 / x

        m, n = pvpq[f], pvpq[t]
        if f != slack and t != slack:
            add(a_rows, a_cols, a_vals, m, n, -gmk * sin_s - bmk * cos_s)
            add(a_rows, a_cols, a_vals, n, m, gmk * sin_s - bmk * cos_s)
        if f != slack:
            add(a_rows, a_cols, a_vals, m, m, bmk)
        if t != slack:
            add(a_rows, a_cols, a_vals, n, n, bmk)

        bmk = -1.0 / x if variant == DecoupledVariant.BX else -x / z2
        tap = br.tap_ratio
        m, n = pq[f], pq[t]
        if m >= 0 and n >= 0:
            add(r_rows, r_cols, r_vals, m, n, -bmk / tap)
            add(r_rows, r_cols, r_vals, n, m, -bmk / tap)
        if m >= 0:
            add(r_rows, r_cols, r_vals, m, m, (bmk + 0.5 * br.b_pu) / tap ** 2)
        if n >= 0:
            add(r_rows, r_cols, r_vals, n, n, bmk + 0.5 * br.b_pu)

    for i in numbering.pq:
        add(r_rows, r_cols, r_vals, pq[i], pq[i], network.buses[i].b_shunt_pu)

    b_prime = CompressedColumn.from_triplets(
        a_rows, a_cols, a_vals, (numbering.n_angle, numbering.n_angle),
    )
    b_double_prime = CompressedColumn.from_triplets(
        r_rows, r_cols, r_vals, (numbering.n_magnitude, numbering.n_magnitude),
    )
    return b_prime, b_double_prime


class FastDecoupledSolver:
    """Fast-decoupled method: two fixed factorizations, substitutions only."""

    def __init__(
        self,
        admittance: AdmittanceMatrix,
        classification: BusClassification,
        p_spec: np.ndarray,
        q_spec: np.ndarray,
        magnitude: np.ndarray,
        angle: np.ndarray,
        network: NetworkModel,
        variant: DecoupledVariant = DecoupledVariant.BX,
        linear_solver: LinearSolver = LinearSolver.LU,
    ) -> None:
        self._y = admittance
        self.classification = classification
        self.numbering = number_states(classification)
        self.variant = DecoupledVariant(variant)
        self.linear_solver = LinearSolver(linear_solver)

        self.p_spec = np.array(p_spec, dtype=np.float64)
        self.q_spec = np.array(q_spec, dtype=np.float64)
        self.magnitude = np.array(magnitude, dtype=np.float64)
        self.angle = np.array(angle, dtype=np.float64)

        self.active_mismatch = np.zeros(self.numbering.n_angle)
        self.reactive_mismatch = np.zeros(self.numbering.n_magnitude)
        self.active_factorization: Factorization | None = None
        self.reactive_factorization: Factorization | None = None
        self._valid = True
        self._fresh = False

        self.refactorize(network)

    @property
    def method(self) -> str:
        return f"fast_decoupled_{self.variant.value}"

    def refactorize(self, network: NetworkModel) -> None:
        """Rebuild and factorize B' and B''; nothing is replaced if either fails."""
        b_prime, b_double_prime = build_decoupled_matrices(
            network, self.classification, self.numbering, self.variant,
        )
        active = factorize(b_prime, self.linear_solver)
        reactive = factorize(b_double_prime, self.linear_solver)
        self.b_prime, self.b_double_prime = b_prime, b_double_prime
        self.active_factorization, self.reactive_factorization = active, reactive
        self._valid = True
        logger.debug(
            "Factorized B' (%d nonzeros) and B'' (%d nonzeros)",
            self.b_prime.nnz, self.b_double_prime.nnz,
            extra={"method": self.method},
        )

    def _check_valid(self) -> None:
        if not self._valid:
            raise IncompatibleEditError("Solver was invalidated by a topology edit; rebuild it")

    def _reactive(self, injection: np.ndarray) -> np.ndarray:
        pq = self.numbering.pq
        return (injection.imag[pq] - self.q_spec[pq]) / self.magnitude[pq]

    def mismatch(self) -> tuple[float, float]:
        """Voltage-normalized mismatches ΔP/V and ΔQ/V; return their maxima."""
        self._check_valid()
        pvpq = self.numbering.pvpq
        injection = self._y.injection(self.magnitude, self.angle)
        self.active_mismatch[:] = (injection.real[pvpq] - self.p_spec[pvpq]) / self.magnitude[pvpq]
        self.reactive_mismatch[:] = self._reactive(injection)
        self._fresh = True
        return max_abs(self.active_mismatch), max_abs(self.reactive_mismatch)

    def step(self) -> None:
        """Angle half-step with B', then magnitude half-step with B''.

        No convergence test runs between the half-steps; the caller's next
        ``mismatch()`` decides convergence.
        """
        self._check_valid()
        if not self._fresh:
            self.mismatch()
        numbering = self.numbering

        self.angle[numbering.pvpq] += self.active_factorization.solve(self.active_mismatch)

        injection = self._y.injection(self.magnitude, self.angle)
        self.reactive_mismatch[:] = self._reactive(injection)
        self.magnitude[numbering.pq] += self.reactive_factorization.solve(self.reactive_mismatch)
        self._fresh = False

    def set_injections(self, p_spec: np.ndarray, q_spec: np.ndarray) -> None:
        self.p_spec[:] = p_spec
        self.q_spec[:] = q_spec
        self._fresh = False

    def set_magnitude(self, bus: int, value: float) -> None:
        self.magnitude[bus] = value
        self._fresh = False

    def refresh_admittance(self, network: NetworkModel) -> bool:
        """Branch or shunt values changed: B' and B'' are rebuilt and refactorized."""
        self.refactorize(network)
        self._fresh = False
        return True

    def invalidate(self) -> None:
        self.b_prime = None
        self.b_double_prime = None
        self.active_factorization = None
        self.reactive_factorization = None
        self._valid = False
