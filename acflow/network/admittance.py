"""Nodal admittance (Y-bus) and DC susceptance model construction.

For each in-service branch with series admittance y = 1/(r + jx), total
charging admittance g + jb and complex ratio tau = |tap|·e^{j·shift}:

    Y_tt = y + (g + jb)/2
    Y_ff = Y_tt / |tau|²
    Y_ft = -y / conj(tau)
    Y_tf = -y / tau

Diagonals accumulate Y_ff / Y_tt of every incident branch plus the bus
shunt admittance. Every diagonal is part of the pattern even when zero.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from acflow.core.exceptions import ConfigurationError
from acflow.network.network_model import NetworkModel
from acflow.network.sparse import CompressedColumn


@dataclass
class AdmittanceMatrix:
    """Y-bus in compressed-column form plus cached per-entry and per-branch terms.

    Solvers read this object; only the builder functions in this module
    write to it. The cached real/imaginary arrays are read-only views.
    """
    matrix: CompressedColumn
    transpose: CompressedColumn
    # Parallel to matrix storage order
    rows: np.ndarray
    cols: np.ndarray
    conductance: np.ndarray
    susceptance: np.ndarray
    diagonal: np.ndarray  # storage position of Y_ii
    # Per-branch two-port parameters (zero for out-of-service branches)
    series: np.ndarray
    ratio: np.ndarray
    from_from: np.ndarray
    from_to: np.ndarray
    to_from: np.ndarray
    to_to: np.ndarray

    @property
    def n_bus(self) -> int:
        return self.matrix.shape[0]

    def injection(self, magnitude: np.ndarray, angle: np.ndarray) -> np.ndarray:
        """Complex power injection S = V·conj(Y·V) at every bus."""
        voltage = magnitude * np.exp(1j * angle)
        return voltage * np.conj(self.matrix @ voltage)

    def self_admittance(self, bus: int) -> complex:
        return complex(self.matrix.data[self.diagonal[bus]])


def _branch_terms(network: NetworkModel) -> dict[str, np.ndarray]:
    m = network.n_branch
    series = np.zeros(m, dtype=np.complex128)
    ratio = np.ones(m, dtype=np.complex128)
    from_from = np.zeros(m, dtype=np.complex128)
    from_to = np.zeros(m, dtype=np.complex128)
    to_from = np.zeros(m, dtype=np.complex128)
    to_to = np.zeros(m, dtype=np.complex128)

    for br in network.branches:
        k = br.index
        tau = br.tap_ratio * np.exp(1j * br.shift_rad)
        ratio[k] = tau
        if not br.in_service:
            continue

        y = 1.0 / br.z_pu
        series[k] = y
        to_to[k] = y + 0.5 * complex(br.g_pu, br.b_pu)
        from_from[k] = to_to[k] / (abs(tau) ** 2)
        from_to[k] = -y / np.conj(tau)
        to_from[k] = -y / tau

    return {
        "series": series,
        "ratio": ratio,
        "from_from": from_from,
        "from_to": from_to,
        "to_from": to_from,
        "to_to": to_to,
    }


def _assemble(network: NetworkModel, terms: dict[str, np.ndarray]) -> CompressedColumn:
    n = network.n_bus
    active = [br for br in network.branches if br.in_service]
    f = np.array([br.from_bus for br in active], dtype=np.int64)
    t = np.array([br.to_bus for br in active], dtype=np.int64)
    k = np.array([br.index for br in active], dtype=np.int64)

    shunt = np.array(
        [complex(b.g_shunt_pu, b.b_shunt_pu) for b in network.buses],
        dtype=np.complex128,
    )
    bus_index = np.arange(n, dtype=np.int64)

    rows = np.concatenate([bus_index, f, t, f, t])
    cols = np.concatenate([bus_index, f, t, t, f])
    values = np.concatenate([
        shunt,
        terms["from_from"][k],
        terms["to_to"][k],
        terms["from_to"][k],
        terms["to_from"][k],
    ])
    return CompressedColumn.from_triplets(rows, cols, values, (n, n), dtype=np.complex128)


def _readonly(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


def build_admittance(network: NetworkModel) -> AdmittanceMatrix:
    """Construct the nodal admittance matrix and its transpose."""
    network.validate()
    terms = _branch_terms(network)
    matrix = _assemble(network, terms)

    return AdmittanceMatrix(
        matrix=matrix,
        transpose=matrix.transpose(),
        rows=_readonly(matrix.indices.astype(np.int64)),
        cols=_readonly(matrix.column_indices()),
        conductance=_readonly(matrix.data.real.copy()),
        susceptance=_readonly(matrix.data.imag.copy()),
        diagonal=_readonly(matrix.diagonal_positions()),
        **{name: _readonly(arr) for name, arr in terms.items()},
    )


def patch_admittance(admittance: AdmittanceMatrix, network: NetworkModel) -> None:
    """Refresh Y-bus values in place for an unchanged sparsity pattern.

    Raises ValueError if the network's pattern no longer matches; the caller
    must then rebuild with ``build_admittance``.
    """
    network.validate()
    terms = _branch_terms(network)
    fresh = _assemble(network, terms)
    admittance.matrix.patch_values(fresh)
    admittance.transpose.patch_values(fresh.transpose())
    admittance.conductance = _readonly(fresh.data.real.copy())
    admittance.susceptance = _readonly(fresh.data.imag.copy())
    for name, arr in terms.items():
        setattr(admittance, name, _readonly(arr))


# ======================================================================
# DC model
# ======================================================================


@dataclass
class DcModel:
    """DC-equivalent nodal susceptance network."""
    matrix: CompressedColumn
    admittance: np.ndarray   # per-branch 1/(tau·x), zero when out of service
    shift_power: np.ndarray  # per-bus injection caused by phase shifters


def build_dc_model(network: NetworkModel) -> DcModel:
    """Build the DC nodal matrix B with branch admittance 1/(tau·x)."""
    network.validate()
    n = network.n_bus
    admittance = np.zeros(network.n_branch)
    shift_power = np.zeros(n)
    diagonal = np.zeros(n)

    rows: list[int] = []
    cols: list[int] = []
    values: list[float] = []
    for br in network.branches:
        if not br.in_service:
            continue
        if abs(br.x_pu) < 1e-12:
            raise ConfigurationError(
                f"Branch '{br.name}' has zero reactance; the DC model needs 1/x"
            )
        b = 1.0 / (br.tap_ratio * br.x_pu)
        admittance[br.index] = b

        shift = br.shift_rad * b
        shift_power[br.from_bus] -= shift
        shift_power[br.to_bus] += shift

        diagonal[br.from_bus] += b
        diagonal[br.to_bus] += b
        rows += [br.from_bus, br.to_bus]
        cols += [br.to_bus, br.from_bus]
        values += [-b, -b]

    bus_index = list(range(n))
    matrix = CompressedColumn.from_triplets(
        bus_index + rows, bus_index + cols, list(diagonal) + values, (n, n),
    )
    return DcModel(matrix=matrix, admittance=admittance, shift_power=shift_power)
