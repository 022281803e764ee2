"""Tests for edits applied to a live power-flow handle."""

from __future__ import annotations

import copy

import numpy as np
import pytest

from acflow.core.exceptions import ConfigurationError, IncompatibleEditError, SingularSystemError
from acflow.network.network_model import BranchData, BusData, BusType, GeneratorData
from acflow.powerflow.api import build, mismatch, solve_power_flow, step, voltage
from acflow.powerflow.handle import Method
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


def _converge(handle, tolerance=1e-10, cap=2000):
    for _ in range(cap):
        if max(mismatch(handle)) < tolerance:
            return
        step(handle)
    raise AssertionError("did not converge")


def _solved(network, method):
    handle = build(network, method)
    _converge(handle)
    return handle


def _assert_same_voltage(handle, reference):
    magnitude, angle = voltage(handle)
    np.testing.assert_allclose(magnitude, reference.voltage_pu, atol=1e-8)
    np.testing.assert_allclose(angle, reference.voltage_angle_rad, atol=1e-8)


ALL_METHODS = [
    Method.NEWTON_RAPHSON,
    Method.FAST_DECOUPLED_BX,
    Method.FAST_DECOUPLED_XB,
    Method.GAUSS_SEIDEL,
]


class TestNumericEdits:
    """Edits that keep the partition are patched in place."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_demand_edit_matches_rebuild(self, three_bus_mesh, method):
        """Patching and re-converging equals building from the edited network."""
        handle = _solved(three_bus_mesh, method)
        solver = handle.solver

        kind = apply_edit(handle, BusEdit(bus=1, p_load_pu=0.6, q_load_pu=0.25))
        assert kind == EditKind.NUMERIC
        assert handle.solver is solver
        _converge(handle)

        edited = copy.deepcopy(three_bus_mesh)
        edited.buses[1].p_load_pu = 0.6
        edited.buses[1].q_load_pu = 0.25
        reference = solve_power_flow(edited, Method.NEWTON_RAPHSON, tolerance=1e-12)
        _assert_same_voltage(handle, reference)

    def test_newton_pattern_reused(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        jacobian = handle.solver.jacobian
        apply_edit(handle, GeneratorEdit(generator=1, p_gen_pu=0.4))
        _converge(handle)
        assert handle.solver.jacobian is jacobian

    def test_decoupled_factorization_kept(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.FAST_DECOUPLED_BX)
        factorization = handle.solver.active_factorization
        assert apply_edit(handle, BusEdit(bus=1, p_load_pu=0.4)) == EditKind.NUMERIC
        assert handle.solver.active_factorization is factorization

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_setpoint_edit(self, three_bus_mesh, method):
        handle = _solved(three_bus_mesh, method)
        assert apply_edit(handle, GeneratorEdit(generator=1, v_setpoint_pu=1.03)) == EditKind.NUMERIC
        _converge(handle)
        assert voltage(handle)[0][2] == pytest.approx(1.03)

    def test_generator_added_at_pq_bus(self, three_bus_mesh):
        """A PQ bus gaining a generator stays PQ; only its injection changes."""
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        edit = AddGenerator(GeneratorData(index=-1, name="Local", bus=1, p_gen_pu=0.1))
        assert apply_edit(handle, edit) == EditKind.NUMERIC
        assert handle.classification.bus_types[1] == BusType.PQ
        assert handle.network.generators[-1].index == 2

    def test_shunt_edit_newton_numeric(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        assert apply_edit(handle, BusEdit(bus=1, b_shunt_pu=0.1)) == EditKind.NUMERIC
        _converge(handle)
        edited = copy.deepcopy(three_bus_mesh)
        edited.buses[1].b_shunt_pu = 0.1
        _assert_same_voltage(handle, solve_power_flow(edited, tolerance=1e-12))

    def test_shunt_edit_decoupled_refactorizes(self, three_bus_mesh):
        """B'' carries bus shunts, so a shunt edit refactorizes it."""
        handle = _solved(three_bus_mesh, Method.FAST_DECOUPLED_XB)
        factorization = handle.solver.reactive_factorization
        assert apply_edit(handle, BusEdit(bus=1, b_shunt_pu=0.1)) == EditKind.STRUCTURAL
        assert handle.solver.reactive_factorization is not factorization
        _converge(handle)
        edited = copy.deepcopy(three_bus_mesh)
        edited.buses[1].b_shunt_pu = 0.1
        _assert_same_voltage(handle, solve_power_flow(edited, tolerance=1e-12))


class TestStructuralEdits:
    """Branch and partition edits rebuild the admittance and the solver."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_branch_edit(self, three_bus_mesh, method):
        handle = _solved(three_bus_mesh, method)
        old = handle.solver
        assert apply_edit(handle, BranchEdit(branch=2, x_pu=0.15)) == EditKind.STRUCTURAL
        assert handle.solver is not old
        with pytest.raises(IncompatibleEditError):
            old.mismatch()
        _converge(handle)

        edited = copy.deepcopy(three_bus_mesh)
        edited.branches[2].x_pu = 0.15
        _assert_same_voltage(handle, solve_power_flow(edited, tolerance=1e-12))

    def test_branch_outage_and_addition(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        assert apply_edit(handle, BranchEdit(branch=0, in_service=False)) == EditKind.STRUCTURAL
        _converge(handle)
        parallel = BranchData(index=-1, name="Line01b", from_bus=0, to_bus=1, r_pu=0.01, x_pu=0.1)
        assert apply_edit(handle, AddBranch(parallel)) == EditKind.STRUCTURAL
        assert handle.network.branches[-1].index == 3
        _converge(handle)

    def test_partition_change(self, three_bus_mesh):
        """Losing the only unit at a PV bus turns it into a PQ bus."""
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        kind = apply_edit(handle, GeneratorEdit(generator=1, in_service=False))
        assert kind == EditKind.STRUCTURAL
        assert handle.classification.bus_types[2] == BusType.PQ
        assert handle.solver.numbering.n_magnitude == 2
        _converge(handle)

    def test_warm_start_after_rebuild(self, three_bus_mesh):
        """The rebuilt solver starts from the voltages reached so far."""
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        before = voltage(handle)
        apply_edit(handle, BranchEdit(branch=2, b_pu=0.0))
        np.testing.assert_allclose(voltage(handle)[1], before[1])

    def test_monitor_reset(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        apply_edit(handle, BranchEdit(branch=2, r_pu=0.03))
        assert handle.monitor.iterations == 0


class TestBusCountEdits:
    """Adding or removing a bus tears everything down."""

    def test_remove_bus(self, three_bus_radial, golden_voltage):
        handle = _solved(three_bus_radial, Method.NEWTON_RAPHSON)
        assert apply_edit(handle, RemoveBus(bus=2)) == EditKind.REBUILD
        assert handle.network.n_bus == 2
        _converge(handle)
        magnitude, angle = golden_voltage
        assert voltage(handle)[0][1] == pytest.approx(magnitude[1], abs=1e-6)
        assert voltage(handle)[1][1] == pytest.approx(angle[1], abs=1e-6)

    def test_add_bus_then_connect(self, three_bus_radial):
        handle = _solved(three_bus_radial, Method.NEWTON_RAPHSON)
        new_bus = BusData(index=-1, name="Load3", p_load_pu=0.02)
        assert apply_edit(handle, AddBus(new_bus)) == EditKind.REBUILD
        assert handle.network.buses[3].index == 3
        line = BranchData(index=-1, name="Line13", from_bus=1, to_bus=3, x_pu=0.02)
        assert apply_edit(handle, AddBranch(line)) == EditKind.STRUCTURAL
        _converge(handle)
        assert voltage(handle)[0][3] < voltage(handle)[0][1]


class TestRejectedEdits:
    """Edits that would move the slack bus leave the handle untouched."""

    def test_last_slack_generator_removed(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        solver = handle.solver
        with pytest.raises(IncompatibleEditError, match="last in-service generator"):
            apply_edit(handle, GeneratorEdit(generator=0, in_service=False))
        assert handle.solver is solver
        assert handle.network.generators[0].in_service
        assert max(mismatch(handle)) < 1e-10

    def test_slack_retyped(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        with pytest.raises(IncompatibleEditError):
            apply_edit(handle, BusEdit(bus=0, bus_type=BusType.PV))
        assert handle.classification.slack == 0

    def test_slack_bus_removed(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        with pytest.raises(IncompatibleEditError):
            apply_edit(handle, RemoveBus(bus=0))
        assert handle.network.n_bus == 3

    def test_unknown_index(self, three_bus_mesh):
        handle = _solved(three_bus_mesh, Method.NEWTON_RAPHSON)
        with pytest.raises(ConfigurationError, match="not found"):
            apply_edit(handle, BranchEdit(branch=9, x_pu=0.1))

    def test_failed_refactorization_leaves_handle_unchanged(self, three_bus_radial):
        """A shunt that cancels the B'' diagonal fails before the Y-bus is patched."""
        handle = build(three_bus_radial, Method.FAST_DECOUPLED_BX)
        before = mismatch(handle)
        ybus = handle.admittance.matrix.toarray()
        factorization = handle.solver.reactive_factorization

        with pytest.raises(SingularSystemError):
            apply_edit(handle, BusEdit(bus=1, b_shunt_pu=20.0))
        assert handle.network.buses[1].b_shunt_pu == 0.0
        np.testing.assert_array_equal(handle.admittance.matrix.toarray(), ybus)
        assert handle.solver.reactive_factorization is factorization
        assert mismatch(handle) == pytest.approx(before)
