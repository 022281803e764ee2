"""Starting voltages and generator setpoints for a solve."""

from __future__ import annotations

import numpy as np

from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import BusType, NetworkModel


def voltage_setpoints(network: NetworkModel, classification: BusClassification) -> np.ndarray:
    """Magnitude setpoint of the first in-service generator at PV/slack buses.

    PQ buses carry NaN.
    """
    setpoint = np.full(network.n_bus, np.nan)
    for i, bus_type in enumerate(classification.bus_types):
        if bus_type == BusType.PQ:
            continue
        gens = network.generators_at(i)
        if gens:
            setpoint[i] = gens[0].v_setpoint_pu
    return setpoint


def initial_voltage(
    network: NetworkModel,
    classification: BusClassification,
) -> tuple[np.ndarray, np.ndarray]:
    """Last-known bus voltages with generator setpoints at PV/slack buses.

    A flat start and a warm start differ only in what the buses carry.
    """
    magnitude = np.array([b.v_magnitude_pu for b in network.buses], dtype=np.float64)
    angle = np.array([b.v_angle_rad for b in network.buses], dtype=np.float64)

    setpoint = voltage_setpoints(network, classification)
    controlled = ~np.isnan(setpoint)
    magnitude[controlled] = setpoint[controlled]
    return magnitude, angle
