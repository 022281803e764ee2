"""Shared test fixtures for acflow network and power-flow tests."""

from __future__ import annotations

import pytest

from acflow.network.network_model import (
    BranchData,
    BusData,
    BusType,
    GeneratorData,
    NetworkModel,
)


# ======================================================================
# Golden 3-bus radial network
# ======================================================================

# Converged voltages of the radial network, flat start, NR to 1e-10
GOLDEN_MAGNITUDE = [1.0, 0.999487231, 0.999999875]
GOLDEN_ANGLE = [0.0, -0.005002586, -0.000500000]


def make_three_bus_radial() -> NetworkModel:
    """Slack bus 0 feeding two lossless radial lines to PQ buses 1 and 2."""
    buses = [
        BusData(index=0, name="Slack", bus_type=BusType.SLACK),
        BusData(index=1, name="Load1", bus_type=BusType.PQ, p_load_pu=0.1, q_load_pu=0.01),
        BusData(index=2, name="Load2", bus_type=BusType.PQ, p_load_pu=0.05),
    ]
    branches = [
        BranchData(index=0, name="Line01", from_bus=0, to_bus=1, x_pu=0.05),
        BranchData(index=1, name="Line02", from_bus=0, to_bus=2, x_pu=0.01),
    ]
    generators = [
        GeneratorData(index=0, name="Grid", bus=0, v_setpoint_pu=1.0),
    ]
    return NetworkModel(buses=buses, branches=branches, generators=generators)


def make_three_bus_mesh() -> NetworkModel:
    """Lossy 3-bus mesh: slack, one PQ load, one PV generator at 1.02 pu."""
    buses = [
        BusData(index=0, name="Grid", bus_type=BusType.SLACK),
        BusData(index=1, name="Load", bus_type=BusType.PQ, p_load_pu=0.5, q_load_pu=0.2),
        BusData(index=2, name="Plant", bus_type=BusType.PV),
    ]
    branches = [
        BranchData(index=0, name="Line01", from_bus=0, to_bus=1, r_pu=0.01, x_pu=0.1, b_pu=0.02),
        BranchData(index=1, name="Line12", from_bus=1, to_bus=2, r_pu=0.01, x_pu=0.1, b_pu=0.02),
        BranchData(index=2, name="Line02", from_bus=0, to_bus=2, r_pu=0.02, x_pu=0.2),
    ]
    generators = [
        GeneratorData(index=0, name="Grid", bus=0, v_setpoint_pu=1.0),
        GeneratorData(index=1, name="Plant", bus=2, p_gen_pu=0.3, v_setpoint_pu=1.02,
                      q_min_pu=-0.5, q_max_pu=0.5),
    ]
    return NetworkModel(buses=buses, branches=branches, generators=generators)


@pytest.fixture
def three_bus_radial() -> NetworkModel:
    return make_three_bus_radial()


@pytest.fixture
def three_bus_mesh() -> NetworkModel:
    return make_three_bus_mesh()


@pytest.fixture
def lossless_mesh() -> NetworkModel:
    """The mesh with resistance, charging and shunts removed."""
    network = make_three_bus_mesh()
    for br in network.branches:
        br.r_pu = 0.0
        br.b_pu = 0.0
    return network


@pytest.fixture
def islanded_network() -> NetworkModel:
    """Bus 2 has no branch to the rest of the network."""
    network = make_three_bus_radial()
    network.branches[1].in_service = False
    return network


@pytest.fixture
def golden_voltage() -> tuple[list[float], list[float]]:
    return GOLDEN_MAGNITUDE, GOLDEN_ANGLE
