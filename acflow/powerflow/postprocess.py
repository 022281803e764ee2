"""Bus, branch and generator powers and currents from final voltages.

All functions here are pure: they read the network, the admittance model
and a voltage profile and return new arrays. Powers are per-unit on the
system base; angles are radians.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from acflow.network.admittance import AdmittanceMatrix
from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import BusType, NetworkModel


@dataclass
class BusPower:
    """Per-bus powers, indexed by bus."""
    injection_p: np.ndarray
    injection_q: np.ndarray
    supply_p: np.ndarray
    supply_q: np.ndarray
    shunt_p: np.ndarray
    shunt_q: np.ndarray


@dataclass
class BranchPower:
    """Per-branch powers, indexed by branch. Out-of-service branches carry zeros."""
    from_p: np.ndarray
    from_q: np.ndarray
    to_p: np.ndarray
    to_q: np.ndarray
    charging_p: np.ndarray
    charging_q: np.ndarray
    loss_p: np.ndarray
    loss_q: np.ndarray


@dataclass
class GeneratorPower:
    """Per-generator output, indexed by generator. Out-of-service units carry zeros."""
    p: np.ndarray
    q: np.ndarray


@dataclass
class BusCurrent:
    magnitude: np.ndarray
    angle: np.ndarray


@dataclass
class BranchCurrent:
    from_magnitude: np.ndarray
    from_angle: np.ndarray
    to_magnitude: np.ndarray
    to_angle: np.ndarray
    series_magnitude: np.ndarray
    series_angle: np.ndarray


def _phasor(magnitude: np.ndarray, angle: np.ndarray) -> np.ndarray:
    return np.asarray(magnitude) * np.exp(1j * np.asarray(angle))


def _ends(network: NetworkModel) -> tuple[np.ndarray, np.ndarray]:
    f = np.array([br.from_bus for br in network.branches], dtype=np.int64)
    t = np.array([br.to_bus for br in network.branches], dtype=np.int64)
    return f, t


def bus_power(
    network: NetworkModel,
    admittance: AdmittanceMatrix,
    classification: BusClassification,
    magnitude: np.ndarray,
    angle: np.ndarray,
) -> BusPower:
    """Injection, generator supply and shunt power at every bus.

    The slack bus supplies whatever active power balances the system; every
    voltage-controlled bus supplies the reactive power its voltage demands.
    """
    voltage = _phasor(magnitude, angle)
    injection = voltage * np.conj(admittance.matrix @ voltage)

    p_load, q_load = network.demand()
    supply_p, supply_q = network.supply()
    supply_p = supply_p.copy()
    supply_q = supply_q.copy()

    slack = classification.slack
    supply_p[slack] = injection.real[slack] + p_load[slack]
    for i, bus_type in enumerate(classification.bus_types):
        if bus_type != BusType.PQ:
            supply_q[i] = injection.imag[i] + q_load[i]

    g_shunt = np.array([b.g_shunt_pu for b in network.buses], dtype=np.float64)
    b_shunt = np.array([b.b_shunt_pu for b in network.buses], dtype=np.float64)
    v2 = np.asarray(magnitude) ** 2

    return BusPower(
        injection_p=injection.real,
        injection_q=injection.imag,
        supply_p=supply_p,
        supply_q=supply_q,
        shunt_p=g_shunt * v2,
        shunt_q=-b_shunt * v2,
    )


def bus_current(
    admittance: AdmittanceMatrix,
    magnitude: np.ndarray,
    angle: np.ndarray,
) -> BusCurrent:
    """Injected current I = Y·V at every bus."""
    current = admittance.matrix @ _phasor(magnitude, angle)
    return BusCurrent(magnitude=np.abs(current), angle=np.angle(current))


def _branch_currents(
    network: NetworkModel,
    admittance: AdmittanceMatrix,
    voltage: np.ndarray,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if network.n_branch == 0:
        empty = np.zeros(0, dtype=np.complex128)
        return empty, empty, empty
    f, t = _ends(network)
    vf, vt = voltage[f], voltage[t]
    i_from = admittance.from_from * vf + admittance.from_to * vt
    i_to = admittance.to_from * vf + admittance.to_to * vt
    i_series = admittance.series * (vf / admittance.ratio - vt)
    return i_from, i_to, i_series


def branch_power(
    network: NetworkModel,
    admittance: AdmittanceMatrix,
    magnitude: np.ndarray,
    angle: np.ndarray,
) -> BranchPower:
    """From/to-end power, charging power and series losses per branch."""
    voltage = _phasor(magnitude, angle)
    i_from, i_to, i_series = _branch_currents(network, admittance, voltage)
    f, t = _ends(network)

    s_from = voltage[f] * np.conj(i_from)
    s_to = voltage[t] * np.conj(i_to)

    in_service = np.array([br.in_service for br in network.branches], dtype=bool)
    r = np.array([br.r_pu for br in network.branches], dtype=np.float64)
    x = np.array([br.x_pu for br in network.branches], dtype=np.float64)
    g = np.array([br.g_pu for br in network.branches], dtype=np.float64)
    b = np.array([br.b_pu for br in network.branches], dtype=np.float64)

    # Charging elements sit on the ideal-transformer side of the from end
    end_v2 = np.abs(voltage[f] / admittance.ratio) ** 2 + np.abs(voltage[t]) ** 2
    charging_p = np.where(in_service, 0.5 * g * end_v2, 0.0)
    charging_q = np.where(in_service, 0.5 * b * end_v2, 0.0)

    series_i2 = np.abs(i_series) ** 2
    return BranchPower(
        from_p=s_from.real,
        from_q=s_from.imag,
        to_p=s_to.real,
        to_q=s_to.imag,
        charging_p=charging_p,
        charging_q=charging_q,
        loss_p=series_i2 * r * in_service,
        loss_q=series_i2 * x * in_service,
    )


def branch_current(
    network: NetworkModel,
    admittance: AdmittanceMatrix,
    magnitude: np.ndarray,
    angle: np.ndarray,
) -> BranchCurrent:
    """From-end, to-end and series current phasors per branch."""
    voltage = _phasor(magnitude, angle)
    i_from, i_to, i_series = _branch_currents(network, admittance, voltage)
    return BranchCurrent(
        from_magnitude=np.abs(i_from),
        from_angle=np.angle(i_from),
        to_magnitude=np.abs(i_to),
        to_angle=np.angle(i_to),
        series_magnitude=np.abs(i_series),
        series_angle=np.angle(i_series),
    )


def _share_reactive(total: float, q_min: np.ndarray, q_max: np.ndarray) -> np.ndarray:
    """Split a bus's reactive supply over its units by capability range."""
    n = len(q_min)
    span = q_max - q_min
    if np.all(np.isfinite(span)) and span.sum() > 0:
        return q_min + (total - q_min.sum()) * span / span.sum()
    return np.full(n, total / n)


def generator_power(
    network: NetworkModel,
    bus: BusPower,
    classification: BusClassification,
) -> GeneratorPower:
    """Per-unit generator output consistent with the bus supply.

    At voltage-controlled buses the reactive supply is shared across units
    by capability range. At the slack bus the first in-service unit takes
    the active balance left after the others' scheduled output.
    """
    n_gen = len(network.generators)
    p = np.zeros(n_gen)
    q = np.zeros(n_gen)

    for i, bus_type in enumerate(classification.bus_types):
        units = network.generators_at(i)
        if not units:
            continue
        idx = np.array([g.index for g in units], dtype=np.int64)
        p[idx] = [g.p_gen_pu for g in units]
        q[idx] = [g.q_gen_pu for g in units]

        if i == classification.slack:
            p[idx[0]] = bus.supply_p[i] - p[idx[1:]].sum()
        if bus_type != BusType.PQ:
            q_min = np.array([g.q_min_pu for g in units], dtype=np.float64)
            q_max = np.array([g.q_max_pu for g in units], dtype=np.float64)
            q[idx] = _share_reactive(bus.supply_q[i], q_min, q_max)

    return GeneratorPower(p=p, q=q)
