"""DC power flow approximation.

Assumptions: V ≈ 1.0 pu, cos(θij) ≈ 1, sin(θij) ≈ θij, Q and r neglected.
Solves B·θ = P_spec - G_shunt - P_shift on the non-slack buses with the
slack angle held at its given value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from acflow.network.admittance import build_dc_model
from acflow.network.bus_classifier import classify_buses
from acflow.network.network_model import NetworkModel
from acflow.powerflow.factorization import LinearSolver, factorize

logger = logging.getLogger(__name__)


@dataclass
class DcPowerFlowResult:
    """Results of a DC power flow solution."""
    slack: int
    voltage_angle_rad: np.ndarray
    p_inject_pu: np.ndarray
    p_supply_pu: np.ndarray
    # Per-branch active power at the from and to ends
    from_p_pu: np.ndarray
    to_p_pu: np.ndarray


def dc_power_flow(
    network: NetworkModel,
    linear_solver: LinearSolver = LinearSolver.LU,
) -> DcPowerFlowResult:
    """Solve the linear DC power flow.

    Raises:
        ConfigurationError: no valid slack bus.
        SingularSystemError: the network is split into islands.
    """
    model = build_dc_model(network)
    slack = classify_buses(network).slack
    n = network.n_bus

    p_gen, _ = network.supply()
    p_load, _ = network.demand()
    g_shunt = np.array([b.g_shunt_pu for b in network.buses], dtype=np.float64)
    rhs = p_gen - p_load - g_shunt - model.shift_power

    theta = np.zeros(n)
    theta[slack] = network.buses[slack].v_angle_rad

    keep = np.flatnonzero(np.arange(n) != slack)
    matrix = model.matrix.to_scipy()
    reduced = matrix[keep][:, keep].tocsc()
    coupling = matrix[keep][:, [slack]].toarray().ravel()
    theta[keep] = factorize(reduced, linear_solver).solve(rhs[keep] - coupling * theta[slack])

    injection = matrix @ theta + g_shunt + model.shift_power
    supply = p_gen.copy()
    supply[slack] = p_load[slack] + injection[slack]

    f = np.array([br.from_bus for br in network.branches], dtype=np.int64)
    t = np.array([br.to_bus for br in network.branches], dtype=np.int64)
    shift = np.array([br.shift_rad for br in network.branches], dtype=np.float64)
    from_p = model.admittance * (theta[f] - theta[t] - shift) if len(f) else np.zeros(0)

    logger.info(
        "DC power flow solved for %d buses, slack supply %.4f pu", n, supply[slack],
        extra={"method": "dc"},
    )
    return DcPowerFlowResult(
        slack=slack,
        voltage_angle_rad=theta,
        p_inject_pu=injection,
        p_supply_pu=supply,
        from_p_pu=from_p,
        to_p_pu=-from_p,
    )
