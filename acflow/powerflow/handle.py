"""Solver handle: method selection, options and solver construction.

A handle owns a private copy of the network, its bus classification, the
admittance model and exactly one live solver. The public operations in
``acflow.powerflow.api`` and the edit logic in ``acflow.powerflow.incremental``
both work on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

from pydantic import BaseModel, Field

from acflow.config import settings
from acflow.network.admittance import AdmittanceMatrix
from acflow.network.bus_classifier import BusClassification
from acflow.network.network_model import NetworkModel
from acflow.powerflow.convergence import ConvergenceMonitor
from acflow.powerflow.factorization import LinearSolver
from acflow.powerflow.fast_decoupled import DecoupledVariant, FastDecoupledSolver
from acflow.powerflow.gauss_seidel import GaussSeidelSolver
from acflow.powerflow.initial import initial_voltage, voltage_setpoints
from acflow.powerflow.newton_raphson import NewtonRaphsonSolver

logger = logging.getLogger(__name__)

Solver = Union[NewtonRaphsonSolver, FastDecoupledSolver, GaussSeidelSolver]


class Method(str, Enum):
    NEWTON_RAPHSON = "newton_raphson"
    FAST_DECOUPLED_BX = "fast_decoupled_bx"
    FAST_DECOUPLED_XB = "fast_decoupled_xb"
    GAUSS_SEIDEL = "gauss_seidel"


class SolverOptions(BaseModel):
    """Per-handle solver options. Unset fields take the configured defaults."""

    linear_solver: LinearSolver = Field(
        default_factory=lambda: LinearSolver(settings.linear_solver)
    )
    tolerance: float = Field(default_factory=lambda: settings.tolerance, gt=0)
    max_iterations: int | None = Field(default=None, ge=0)
    jacobian_workers: int = Field(default_factory=lambda: settings.jacobian_workers, ge=1)

    def iteration_cap(self, method: Method) -> int:
        if self.max_iterations is not None:
            return self.max_iterations
        if method == Method.GAUSS_SEIDEL:
            return settings.gauss_seidel_max_iterations
        return settings.max_iterations


@dataclass
class PowerFlowHandle:
    """A built power-flow problem and the solver iterating on it."""
    network: NetworkModel
    method: Method
    options: SolverOptions
    classification: BusClassification
    admittance: AdmittanceMatrix
    solver: Solver
    monitor: ConvergenceMonitor
    solve_id: str = ""


def _newton_raphson(network, classification, admittance, options, magnitude, angle):
    p_spec, q_spec = network.specified_injections()
    return NewtonRaphsonSolver(
        admittance, classification, p_spec, q_spec, magnitude, angle,
        linear_solver=options.linear_solver,
        workers=options.jacobian_workers,
    )


def _fast_decoupled(variant: DecoupledVariant):
    def create(network, classification, admittance, options, magnitude, angle):
        p_spec, q_spec = network.specified_injections()
        return FastDecoupledSolver(
            admittance, classification, p_spec, q_spec, magnitude, angle, network,
            variant=variant,
            linear_solver=options.linear_solver,
        )
    return create


def _gauss_seidel(network, classification, admittance, options, magnitude, angle):
    p_spec, q_spec = network.specified_injections()
    return GaussSeidelSolver(
        admittance, classification, p_spec, q_spec, magnitude, angle,
        voltage_setpoints(network, classification),
    )


_SOLVERS: dict[Method, Callable[..., Solver]] = {
    Method.NEWTON_RAPHSON: _newton_raphson,
    Method.FAST_DECOUPLED_BX: _fast_decoupled(DecoupledVariant.BX),
    Method.FAST_DECOUPLED_XB: _fast_decoupled(DecoupledVariant.XB),
    Method.GAUSS_SEIDEL: _gauss_seidel,
}


def create_solver(
    method: Method,
    network: NetworkModel,
    classification: BusClassification,
    admittance: AdmittanceMatrix,
    options: SolverOptions,
) -> Solver:
    """Construct a solver started from the network's bus voltages and setpoints."""
    method = Method(method)
    magnitude, angle = initial_voltage(network, classification)
    solver = _SOLVERS[method](
        network, classification, admittance, options, magnitude, angle,
    )
    logger.debug(
        "Constructed %s solver for %d buses (%d PV, %d PQ)",
        method.value, network.n_bus, len(classification.pv), len(classification.pq),
        extra={"method": method.value},
    )
    return solver
