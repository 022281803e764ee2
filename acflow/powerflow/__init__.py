"""AC power-flow solvers, post-processing and incremental edits."""

from acflow.powerflow.api import (
    CurrentReport,
    PowerFlowResult,
    PowerReport,
    build,
    current,
    mismatch,
    power,
    solve_power_flow,
    step,
    voltage,
)
from acflow.powerflow.dc_power_flow import DcPowerFlowResult, dc_power_flow
from acflow.powerflow.factorization import LinearSolver
from acflow.powerflow.handle import Method, PowerFlowHandle, SolverOptions
from acflow.powerflow.incremental import (
    AddBranch,
    AddBus,
    AddGenerator,
    BranchEdit,
    BusEdit,
    EditKind,
    GeneratorEdit,
    RemoveBus,
    apply_edit,
)
from acflow.powerflow.reactive_limits import ReactiveLimitResult, adjust_angle, check_reactive_limits

__all__ = [
    "AddBranch",
    "AddBus",
    "AddGenerator",
    "BranchEdit",
    "BusEdit",
    "CurrentReport",
    "DcPowerFlowResult",
    "EditKind",
    "GeneratorEdit",
    "LinearSolver",
    "Method",
    "PowerFlowHandle",
    "PowerFlowResult",
    "PowerReport",
    "ReactiveLimitResult",
    "RemoveBus",
    "SolverOptions",
    "adjust_angle",
    "apply_edit",
    "build",
    "check_reactive_limits",
    "current",
    "dc_power_flow",
    "mismatch",
    "power",
    "solve_power_flow",
    "step",
    "voltage",
]
