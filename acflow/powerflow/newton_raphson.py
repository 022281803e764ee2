"""Newton-Raphson AC power flow.

State vector x = [θ (non-slack buses), V (PQ buses)]. Each iteration:

1. Mismatch: ΔP_i = P_i(θ, V) - P_i^spec at non-slack buses,
             ΔQ_i = Q_i(θ, V) - Q_i^spec at PQ buses
2. Fill J = [∂P/∂θ, ∂P/∂V; ∂Q/∂θ, ∂Q/∂V] on a fixed sparsity pattern
3. Solve J × Δx = mismatch
4. Update: x -= Δx

Off-diagonal terms for admittance entry (i, j), θij = θi - θj:
    ∂P_i/∂θ_j =  Vi·Vj·(Gij·sin θij - Bij·cos θij)
    ∂P_i/∂V_j =  Vi·(Gij·cos θij + Bij·sin θij)
    ∂Q_i/∂θ_j = -Vi·Vj·(Gij·cos θij + Bij·sin θij)
    ∂Q_i/∂V_j =  Vi·(Gij·sin θij - Bij·cos θij)
Diagonal terms use the computed injections P_i, Q_i:
    ∂P_i/∂θ_i = -Q_i - Bii·Vi²      ∂P_i/∂V_i = P_i/Vi + Gii·Vi
    ∂Q_i/∂θ_i =  P_i - Gii·Vi²      ∂Q_i/∂V_i = Q_i/Vi - Bii·Vi
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from acflow.core.exceptions import IncompatibleEditError
from acflow.network.admittance import AdmittanceMatrix
from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import NetworkModel
from acflow.network.sparse import CompressedColumn
from acflow.powerflow.convergence import max_abs
from acflow.powerflow.factorization import Factorization, LinearSolver, factorize
from acflow.powerflow.numbering import number_states

logger = logging.getLogger(__name__)


class NewtonRaphsonSolver:
    """Full Newton-Raphson with a Jacobian pattern built once per partition."""

    method = "newton_raphson"

    def __init__(
        self,
        admittance: AdmittanceMatrix,
        classification: BusClassification,
        p_spec: np.ndarray,
        q_spec: np.ndarray,
        magnitude: np.ndarray,
        angle: np.ndarray,
        linear_solver: LinearSolver = LinearSolver.LU,
        workers: int = 1,
    ) -> None:
        self._y = admittance
        self.classification = classification
        self.numbering = number_states(classification)
        self.linear_solver = LinearSolver(linear_solver)
        self.workers = max(1, int(workers))

        self.p_spec = np.array(p_spec, dtype=np.float64)
        self.q_spec = np.array(q_spec, dtype=np.float64)
        self.magnitude = np.array(magnitude, dtype=np.float64)
        self.angle = np.array(angle, dtype=np.float64)

        size = self.numbering.size
        self.mismatch_vector = np.zeros(size)
        self.increment = np.zeros(size)
        self.factorization: Factorization | None = None
        self._fresh = False
        self._valid = True

        self._build_pattern()

    # ------------------------------------------------------------------
    # Sparsity pattern
    # ------------------------------------------------------------------

    def _build_pattern(self) -> None:
        """Map every admittance nonzero to its (up to four) Jacobian slots."""
        numbering = self.numbering
        n_angle = numbering.n_angle
        rows, cols = self._y.rows, self._y.cols

        eq_angle = numbering.angle[rows]
        var_angle = numbering.angle[cols]
        eq_mag = numbering.magnitude[rows]
        var_mag = numbering.magnitude[cols]

        blocks = [
            (eq_angle, var_angle, 0, 0),              # ∂P/∂θ
            (eq_angle, var_mag, 0, n_angle),          # ∂P/∂V
            (eq_mag, var_angle, n_angle, 0),          # ∂Q/∂θ
            (eq_mag, var_mag, n_angle, n_angle),      # ∂Q/∂V
        ]

        j_rows, j_cols, owners = [], [], []
        for eq, var, row_offset, col_offset in blocks:
            mask = (eq >= 0) & (var >= 0)
            j_rows.append(eq[mask] + row_offset)
            j_cols.append(var[mask] + col_offset)
            owners.append(np.flatnonzero(mask))

        n_triplets = sum(len(o) for o in owners)
        size = numbering.size
        # Tag each triplet with its 1-based ordinal to recover storage positions
        self.jacobian = CompressedColumn.from_triplets(
            np.concatenate(j_rows), np.concatenate(j_cols),
            np.arange(1, n_triplets + 1, dtype=np.float64), (size, size),
        )
        storage = np.empty(n_triplets, dtype=np.int64)
        storage[self.jacobian.data.astype(np.int64) - 1] = np.arange(n_triplets)

        # Per admittance entry, the storage slot in each block (-1 if none)
        nnz = len(rows)
        self._slots = np.full((4, nnz), -1, dtype=np.int64)
        start = 0
        for b, owner in enumerate(owners):
            self._slots[b, owner] = storage[start:start + len(owner)]
            start += len(owner)

        # Row-disjoint work partition: each chunk owns a set of equation buses
        groups = np.array_split(np.arange(self._y.n_bus), self.workers)
        self._chunks = [np.flatnonzero(np.isin(rows, group)) for group in groups if len(group)]

        logger.debug(
            "Jacobian pattern: %d x %d, %d nonzeros", size, size, self.jacobian.nnz,
            extra={"method": self.method},
        )

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def _check_valid(self) -> None:
        if not self._valid:
            raise IncompatibleEditError("Solver was invalidated by a topology edit; rebuild it")

    def mismatch(self) -> tuple[float, float]:
        """Compute ΔP/ΔQ in place; return their maximum absolute values."""
        self._check_valid()
        numbering = self.numbering
        injection = self._y.injection(self.magnitude, self.angle)
        n_angle = numbering.n_angle
        self.mismatch_vector[:n_angle] = injection.real[numbering.pvpq] - self.p_spec[numbering.pvpq]
        self.mismatch_vector[n_angle:] = injection.imag[numbering.pq] - self.q_spec[numbering.pq]
        self._fresh = True
        return max_abs(self.mismatch_vector[:n_angle]), max_abs(self.mismatch_vector[n_angle:])

    def _fill(self, entries: np.ndarray, injection: np.ndarray) -> None:
        y = self._y
        r = y.rows[entries]
        c = y.cols[entries]
        g = y.conductance[entries]
        b = y.susceptance[entries]
        vi = self.magnitude[r]
        vj = self.magnitude[c]
        tij = self.angle[r] - self.angle[c]
        cos_t = np.cos(tij)
        sin_t = np.sin(tij)

        real = g * cos_t + b * sin_t
        imag = g * sin_t - b * cos_t
        values = np.stack([
            vi * vj * imag,     # ∂P/∂θ
            vi * real,          # ∂P/∂V
            -vi * vj * real,    # ∂Q/∂θ
            vi * imag,          # ∂Q/∂V
        ])

        diag = r == c
        if np.any(diag):
            d = r[diag]
            p = injection.real[d]
            q = injection.imag[d]
            v = self.magnitude[d]
            gd = g[diag]
            bd = b[diag]
            values[0, diag] = -q - bd * v ** 2
            values[1, diag] = p / v + gd * v
            values[2, diag] = p - gd * v ** 2
            values[3, diag] = q / v - bd * v

        data = self.jacobian.data
        slots = self._slots[:, entries]
        for block in range(4):
            present = slots[block] >= 0
            data[slots[block, present]] = values[block, present]

    def fill_jacobian(self) -> CompressedColumn:
        """Overwrite Jacobian values at the current voltages."""
        self._check_valid()
        injection = self._y.injection(self.magnitude, self.angle)
        if len(self._chunks) == 1:
            self._fill(self._chunks[0], injection)
        else:
            with ThreadPoolExecutor(max_workers=len(self._chunks)) as pool:
                list(pool.map(lambda entries: self._fill(entries, injection), self._chunks))
        return self.jacobian

    def step(self) -> None:
        """One Newton iteration: fill J, solve, update θ and V."""
        self._check_valid()
        if not self._fresh:
            self.mismatch()

        self.fill_jacobian()
        self.factorization = factorize(self.jacobian, self.linear_solver)
        self.increment = self.factorization.solve(self.mismatch_vector)

        numbering = self.numbering
        n_angle = numbering.n_angle
        self.angle[numbering.pvpq] -= self.increment[:n_angle]
        self.magnitude[numbering.pq] -= self.increment[n_angle:]
        self._fresh = False

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    def set_injections(self, p_spec: np.ndarray, q_spec: np.ndarray) -> None:
        self.p_spec[:] = p_spec
        self.q_spec[:] = q_spec
        self._fresh = False

    def set_magnitude(self, bus: int, value: float) -> None:
        self.magnitude[bus] = value
        self._fresh = False

    def refresh_admittance(self, network: NetworkModel) -> bool:
        """Admittance values changed in place; the pattern is reused as is."""
        self._fresh = False
        return False

    def invalidate(self) -> None:
        self.jacobian = None
        self.factorization = None
        self._slots = None
        self._valid = False
