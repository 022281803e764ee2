"""Generator reactive-power limit enforcement after a converged AC solve."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass

import numpy as np

from acflow.core.exceptions import ConfigurationError
from acflow.network.network_model import BusType, NetworkModel
from acflow.powerflow.api import power
from acflow.powerflow.gauss_seidel import GaussSeidelSolver
from acflow.powerflow.handle import PowerFlowHandle

logger = logging.getLogger(__name__)


@dataclass
class ReactiveLimitResult:
    """Edited network to rebuild from, and per-generator violations.

    ``violations`` holds -1 for a unit clamped at its minimum, 1 at its
    maximum and 0 otherwise.
    """
    network: NetworkModel
    violations: np.ndarray

    @property
    def violated(self) -> bool:
        return bool(np.any(self.violations))


def check_reactive_limits(handle: PowerFlowHandle) -> ReactiveLimitResult:
    """Clamp generators that exceed their reactive limits.

    Uses the handle's current voltages, which must be converged. Every
    in-service unit gets its computed output written back; a violating unit
    is fixed at the violated limit and its bus becomes a PQ bus. If that bus
    was the slack, the first remaining PV bus takes over.

    Raises:
        NonConvergenceError: the handle has not converged.
        ConfigurationError: the slack moved and no PV bus is left to take it.
    """
    generator = power(handle).generator
    network = copy.deepcopy(handle.network)
    classification = handle.classification
    for bus, bus_type in zip(network.buses, classification.bus_types):
        bus.bus_type = bus_type

    violations = np.zeros(len(network.generators), dtype=np.int8)
    slack = classification.slack

    for gen in network.generators:
        if not gen.in_service:
            continue
        gen.p_gen_pu = float(generator.p[gen.index])
        gen.q_gen_pu = float(generator.q[gen.index])

    for gen in network.generators:
        if not gen.in_service or not gen.q_min_pu < gen.q_max_pu:
            continue
        bus = network.buses[gen.bus]
        if bus.bus_type == BusType.PQ:
            continue

        if gen.q_gen_pu < gen.q_min_pu:
            violations[gen.index] = -1
            gen.q_gen_pu = gen.q_min_pu
        elif gen.q_gen_pu > gen.q_max_pu:
            violations[gen.index] = 1
            gen.q_gen_pu = gen.q_max_pu
        else:
            continue

        bus.bus_type = BusType.PQ
        logger.info(
            "Generator '%s' clamped at %.4f pu; bus '%s' becomes PQ",
            gen.name, gen.q_gen_pu, bus.name,
            extra={"bus": bus.index},
        )

        if bus.index == slack:
            for candidate in network.buses:
                if candidate.bus_type == BusType.PV:
                    candidate.bus_type = BusType.SLACK
                    slack = candidate.index
                    logger.info(
                        "Slack bus '%s' converted; bus '%s' is the new slack bus",
                        bus.name, candidate.name,
                        extra={"bus": candidate.index},
                    )
                    break

    if network.buses[slack].bus_type != BusType.SLACK:
        raise ConfigurationError(
            "Reactive limits converted the slack bus and no generator bus is "
            "left to become the new slack bus"
        )

    return ReactiveLimitResult(network=network, violations=violations)


def adjust_angle(handle: PowerFlowHandle, slack: int) -> None:
    """Shift all angles so that ``slack`` keeps the angle given in the network.

    Used after a slack change caused by reactive limits, with the original
    slack bus index.
    """
    if not 0 <= slack < handle.network.n_bus:
        raise ConfigurationError(f"Bus index {slack} not found")
    solver = handle.solver
    shift = handle.network.buses[slack].v_angle_rad - float(solver.angle[slack])
    if isinstance(solver, GaussSeidelSolver):
        solver.voltage *= np.exp(1j * shift)
    else:
        solver.angle += shift
