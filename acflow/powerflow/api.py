"""Caller-driven AC power flow.

Typical use::

    handle = build(network, Method.NEWTON_RAPHSON)
    while True:
        active, reactive = mismatch(handle)
        if max(active, reactive) < tol or handle.monitor.exhausted:
            break
        step(handle)
    magnitude, angle = voltage(handle)

``solve_power_flow`` runs that loop and bundles the derived powers.
Typical convergence: 3-5 Newton iterations for well-conditioned systems.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

import numpy as np

from acflow.config import settings
from acflow.core.exceptions import NonConvergenceError
from acflow.core.logging import new_solve_id
from acflow.network.admittance import build_admittance
from acflow.network.bus_classifier import BusTypeRepair, classify_buses
from acflow.network.network_model import NetworkModel
from acflow.powerflow.convergence import ConvergenceMonitor
from acflow.powerflow.handle import Method, PowerFlowHandle, SolverOptions, create_solver
from acflow.powerflow.incremental import apply_edit
from acflow.powerflow.postprocess import (
    BranchCurrent,
    BranchPower,
    BusCurrent,
    BusPower,
    GeneratorPower,
    branch_current,
    branch_power,
    bus_current,
    bus_power,
    generator_power,
)

logger = logging.getLogger(__name__)

__all__ = [
    "CurrentReport",
    "Method",
    "PowerFlowHandle",
    "PowerFlowResult",
    "PowerReport",
    "SolverOptions",
    "apply_edit",
    "build",
    "current",
    "mismatch",
    "power",
    "solve_power_flow",
    "step",
    "voltage",
]


@dataclass
class PowerReport:
    bus: BusPower
    branch: BranchPower
    generator: GeneratorPower


@dataclass
class CurrentReport:
    bus: BusCurrent
    branch: BranchCurrent


def build(
    network: NetworkModel,
    method: Method | str | None = None,
    options: SolverOptions | None = None,
) -> PowerFlowHandle:
    """Classify buses, assemble Y-bus and construct the selected solver.

    The caller's network is copied; nothing the handle does writes back to it.

    Raises:
        ConfigurationError: invalid indices, zero impedance or no valid slack.
        SingularSystemError: a fast-decoupled matrix cannot be factorized.
    """
    method = Method(method or settings.method)
    options = options or SolverOptions()
    solve_id = new_solve_id()

    net = copy.deepcopy(network)
    net.validate()
    classification = classify_buses(net)
    admittance = build_admittance(net)
    solver = create_solver(method, net, classification, admittance, options)

    logger.info(
        "Built %s power flow: %d buses, %d branches, slack bus %d",
        method.value, net.n_bus, net.n_branch, classification.slack,
        extra={"method": method.value},
    )
    return PowerFlowHandle(
        network=net,
        method=method,
        options=options,
        classification=classification,
        admittance=admittance,
        solver=solver,
        monitor=ConvergenceMonitor(options.tolerance, options.iteration_cap(method)),
        solve_id=solve_id,
    )


def mismatch(handle: PowerFlowHandle) -> tuple[float, float]:
    """Maximum absolute active and reactive mismatch at the current state.

    Calling it twice without a ``step`` in between returns the same values.
    """
    active, reactive = handle.solver.mismatch()
    handle.monitor.record(active, reactive)
    logger.debug(
        "Iteration %d: max |dP| = %.3e, max |dQ| = %.3e",
        handle.monitor.iterations, active, reactive,
        extra={
            "method": handle.method.value,
            "iteration": handle.monitor.iterations,
            "active": active,
            "reactive": reactive,
        },
    )
    return active, reactive


def step(handle: PowerFlowHandle) -> int:
    """Perform exactly one iteration; return the number done so far.

    Raises:
        SingularSystemError: the linear system of this iteration is singular.
    """
    handle.solver.step()
    return handle.monitor.advance()


def voltage(handle: PowerFlowHandle) -> tuple[np.ndarray, np.ndarray]:
    """Per-bus voltage magnitude (pu) and angle (rad), as copies."""
    return np.array(handle.solver.magnitude), np.array(handle.solver.angle)


def _require_converged(handle: PowerFlowHandle, allow_unconverged: bool) -> None:
    if allow_unconverged:
        return
    mismatch(handle)
    if not handle.monitor.converged:
        raise NonConvergenceError(
            f"{handle.method.value} has not converged after "
            f"{handle.monitor.iterations} iterations "
            f"(max mismatch {handle.monitor.statistic:.3e} pu); "
            "pass allow_unconverged=True to read partial results"
        )


def power(handle: PowerFlowHandle, allow_unconverged: bool = False) -> PowerReport:
    """Bus, branch and generator powers at the current voltages."""
    _require_converged(handle, allow_unconverged)
    magnitude, angle = voltage(handle)
    bus = bus_power(handle.network, handle.admittance, handle.classification, magnitude, angle)
    return PowerReport(
        bus=bus,
        branch=branch_power(handle.network, handle.admittance, magnitude, angle),
        generator=generator_power(handle.network, bus, handle.classification),
    )


def current(handle: PowerFlowHandle, allow_unconverged: bool = False) -> CurrentReport:
    """Bus and branch current phasors at the current voltages."""
    _require_converged(handle, allow_unconverged)
    magnitude, angle = voltage(handle)
    return CurrentReport(
        bus=bus_current(handle.admittance, magnitude, angle),
        branch=branch_current(handle.network, handle.admittance, magnitude, angle),
    )


# ======================================================================
# Convenience driver
# ======================================================================


@dataclass
class PowerFlowResult:
    """Results of a complete power flow solution."""
    converged: bool
    iterations: int
    max_mismatch: float
    method: Method
    # Per-bus results (indexed by bus index)
    voltage_pu: np.ndarray
    voltage_angle_rad: np.ndarray
    power: PowerReport
    repairs: tuple[BusTypeRepair, ...] = field(default_factory=tuple)
    handle: PowerFlowHandle | None = None

    @property
    def p_inject_pu(self) -> np.ndarray:
        return self.power.bus.injection_p


def solve_power_flow(
    network: NetworkModel,
    method: Method | str | None = None,
    tolerance: float | None = None,
    max_iter: int | None = None,
    options: SolverOptions | None = None,
) -> PowerFlowResult:
    """Build a solver and iterate until converged or out of iterations.

    Non-convergence is reported through ``PowerFlowResult.converged``, not
    raised; the returned handle can be stepped further.

    Args:
        network: NetworkModel with buses, branches and generators
        method: solution method (default from settings)
        tolerance: stopping threshold on max(|dP|, |dQ|) in per-unit
        max_iter: iteration cap (default from settings, per method)
        options: full solver options; tolerance/max_iter override its fields
    """
    updates = {}
    if tolerance is not None:
        updates["tolerance"] = tolerance
    if max_iter is not None:
        updates["max_iterations"] = max_iter
    base = options or SolverOptions()
    options = SolverOptions.model_validate({**base.model_dump(), **updates})

    handle = build(network, method, options)
    monitor = handle.monitor

    mismatch(handle)
    while not monitor.converged and not monitor.exhausted:
        step(handle)
        mismatch(handle)

    if monitor.converged:
        logger.info(
            "%s converged in %d iterations (max mismatch %.3e pu)",
            handle.method.value, monitor.iterations, monitor.statistic,
            extra={"method": handle.method.value, "iteration": monitor.iterations},
        )
    else:
        logger.warning(
            "%s did not converge in %d iterations (max mismatch %.3e pu)",
            handle.method.value, monitor.iterations, monitor.statistic,
            extra={"method": handle.method.value, "iteration": monitor.iterations},
        )

    magnitude, angle = voltage(handle)
    return PowerFlowResult(
        converged=monitor.converged,
        iterations=monitor.iterations,
        max_mismatch=monitor.statistic,
        method=handle.method,
        voltage_pu=magnitude,
        voltage_angle_rad=angle,
        power=power(handle, allow_unconverged=True),
        repairs=handle.classification.repairs,
        handle=handle,
    )
