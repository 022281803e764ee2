"""Apply network edits to a live power-flow handle.

Every edit is staged on a copy of the handle's network and classified
before anything on the handle changes:

- NUMERIC: injections, setpoints or bus shunts change, the PQ/PV/slack
  partition does not. Arrays are patched in place and the solver keeps
  its Jacobian pattern or factorizations.
- STRUCTURAL: a branch is added or changed, or the PQ/PV partition moves.
  Y-bus and solver are rebuilt, warm-started from the current voltages.
- REBUILD: the bus count changes. Everything is rebuilt.

An edit that moves the slack bus or strips it of its last generator is
rejected with ``IncompatibleEditError`` and the handle is left as it was.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import Union

import numpy as np

from acflow.core.exceptions import ConfigurationError, IncompatibleEditError
from acflow.network.admittance import build_admittance, patch_admittance
from acflow.network.bus_classifier import classify_buses
from acflow.network.network_model import BranchData, BusData, BusType, GeneratorData, NetworkModel
from acflow.powerflow.handle import PowerFlowHandle, Solver, create_solver
from acflow.powerflow.initial import voltage_setpoints

logger = logging.getLogger(__name__)


class EditKind(str, Enum):
    NUMERIC = "numeric"
    STRUCTURAL = "structural"
    REBUILD = "rebuild"


# ----------------------------------------------------------------------
# Edit requests. ``None`` leaves a field unchanged.
# ----------------------------------------------------------------------


@dataclass
class BusEdit:
    bus: int
    bus_type: BusType | None = None
    p_load_pu: float | None = None
    q_load_pu: float | None = None
    g_shunt_pu: float | None = None
    b_shunt_pu: float | None = None


@dataclass
class GeneratorEdit:
    generator: int
    p_gen_pu: float | None = None
    q_gen_pu: float | None = None
    v_setpoint_pu: float | None = None
    q_min_pu: float | None = None
    q_max_pu: float | None = None
    in_service: bool | None = None


@dataclass
class BranchEdit:
    branch: int
    r_pu: float | None = None
    x_pu: float | None = None
    b_pu: float | None = None
    g_pu: float | None = None
    tap: float | None = None
    shift_rad: float | None = None
    in_service: bool | None = None


@dataclass
class AddBranch:
    """Append a branch; its index is assigned on commit."""
    branch: BranchData


@dataclass
class AddGenerator:
    """Append a generator; its index is assigned on commit."""
    generator: GeneratorData


@dataclass
class AddBus:
    """Append a bus; its index is assigned on commit."""
    bus: BusData


@dataclass
class RemoveBus:
    """Remove a bus with its incident branches and generators."""
    bus: int


Edit = Union[BusEdit, GeneratorEdit, BranchEdit, AddBranch, AddGenerator, AddBus, RemoveBus]


def _update(target, edit, skip: str) -> list[str]:
    """Copy every non-None edit field onto target; return the names set."""
    changed = []
    for f in fields(edit):
        if f.name == skip:
            continue
        value = getattr(edit, f.name)
        if value is not None:
            setattr(target, f.name, value)
            changed.append(f.name)
    return changed


def _lookup(items: list, idx: int, what: str):
    if not 0 <= idx < len(items):
        raise ConfigurationError(f"{what} index {idx} not found")
    return items[idx]


def _stage(network: NetworkModel, edit: Edit) -> tuple[bool, bool]:
    """Apply an edit to a network copy. Return (branch_changed, shunt_changed)."""
    if isinstance(edit, BusEdit):
        bus = _lookup(network.buses, edit.bus, "Bus")
        changed = _update(bus, edit, skip="bus")
        if edit.bus_type is not None:
            bus.bus_type = BusType(edit.bus_type)
        return False, bool({"g_shunt_pu", "b_shunt_pu"} & set(changed))

    if isinstance(edit, GeneratorEdit):
        _update(_lookup(network.generators, edit.generator, "Generator"), edit, skip="generator")
        return False, False

    if isinstance(edit, BranchEdit):
        _update(_lookup(network.branches, edit.branch, "Branch"), edit, skip="branch")
        return True, False

    if isinstance(edit, AddBranch):
        branch = copy.deepcopy(edit.branch)
        branch.index = network.n_branch
        network.branches.append(branch)
        return True, False

    if isinstance(edit, AddGenerator):
        generator = copy.deepcopy(edit.generator)
        generator.index = len(network.generators)
        network.generators.append(generator)
        return False, False

    if isinstance(edit, AddBus):
        bus = copy.deepcopy(edit.bus)
        bus.index = network.n_bus
        network.add_bus(bus)
        return True, True

    if isinstance(edit, RemoveBus):
        network.remove_bus(edit.bus)
        return True, True

    raise TypeError(f"Unsupported edit type: {type(edit).__name__}")


def _store_voltage(network: NetworkModel, solver: Solver) -> None:
    """Record the solver's voltages on the buses as the next starting point."""
    for bus, v, theta in zip(network.buses, solver.magnitude, solver.angle):
        bus.v_magnitude_pu = float(v)
        bus.v_angle_rad = float(theta)


def _mapped_slack(slack: int, edit: Edit) -> int:
    """Index of the old slack bus after the edit, -1 if it was removed."""
    if isinstance(edit, RemoveBus):
        if edit.bus == slack:
            return -1
        return slack - 1 if edit.bus < slack else slack
    return slack


def apply_edit(handle: PowerFlowHandle, edit: Edit) -> EditKind:
    """Apply one edit to the handle, patching or rebuilding as required.

    Raises:
        IncompatibleEditError: the edit moves the slack bus or removes its
            last in-service generator. The handle is unchanged.
        ConfigurationError: the edit references unknown indices or leaves
            the network invalid. The handle is unchanged.
    """
    old = handle.classification
    staged = copy.deepcopy(handle.network)
    _store_voltage(staged, handle.solver)
    branch_changed, shunt_changed = _stage(staged, edit)
    staged.validate()

    slack = _mapped_slack(old.slack, edit)
    if slack < 0:
        raise IncompatibleEditError("Edit removes the slack bus; rebuild the solver")
    if staged.buses[slack].bus_type != BusType.SLACK:
        raise IncompatibleEditError(
            f"Edit retypes slack bus {slack} as {staged.buses[slack].bus_type.value}; "
            "rebuild the solver"
        )
    if staged.in_service_generator_count()[slack] == 0:
        raise IncompatibleEditError(
            f"Edit removes the last in-service generator at slack bus {slack}; "
            "rebuild the solver"
        )
    classification = classify_buses(staged)
    if classification.slack != slack:
        raise IncompatibleEditError(
            f"Edit moves the slack bus from {slack} to {classification.slack}; "
            "rebuild the solver"
        )

    if staged.n_bus != handle.network.n_bus:
        kind = EditKind.REBUILD
    elif branch_changed or not classification.same_partition(old):
        kind = EditKind.STRUCTURAL
    else:
        kind = EditKind.NUMERIC

    if kind == EditKind.NUMERIC:
        old_setpoint = voltage_setpoints(handle.network, old)
        new_setpoint = voltage_setpoints(staged, classification)
        solver = handle.solver

        if shunt_changed:
            # the live Y-bus is patched only after the solver refresh succeeds
            if solver.refresh_admittance(staged):
                kind = EditKind.STRUCTURAL
            patch_admittance(handle.admittance, staged)
        solver.set_injections(*staged.specified_injections())
        moved = ~np.isnan(new_setpoint) & (new_setpoint != old_setpoint)
        for bus in np.flatnonzero(moved):
            solver.set_magnitude(int(bus), float(new_setpoint[bus]))
    else:
        admittance = build_admittance(staged)
        solver = create_solver(handle.method, staged, classification, admittance, handle.options)
        handle.solver.invalidate()
        handle.admittance = admittance
        handle.solver = solver

    handle.network = staged
    handle.classification = classification
    handle.monitor.reset()

    logger.info(
        "Applied %s as %s edit", type(edit).__name__, kind.value,
        extra={"method": handle.method.value, "edit": kind.value},
    )
    return kind
