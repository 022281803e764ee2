"""Tests for the Newton-Raphson solver and the caller-driven loop."""

from __future__ import annotations

import numpy as np
import pytest

from acflow.core.exceptions import SingularSystemError
from acflow.network.admittance import build_admittance
from acflow.network.bus_classifier import classify_buses
from acflow.powerflow.api import build, mismatch, solve_power_flow, step, voltage
from acflow.powerflow.factorization import LinearSolver
from acflow.powerflow.handle import Method, SolverOptions
from acflow.powerflow.initial import initial_voltage
from acflow.powerflow.newton_raphson import NewtonRaphsonSolver


def _iterate(handle, tolerance=1e-8, cap=20):
    for _ in range(cap):
        if max(mismatch(handle)) < tolerance:
            return True
        step(handle)
    return max(mismatch(handle)) < tolerance


class TestNewtonRaphson:
    """Tests for the full Newton-Raphson method."""

    def test_golden_three_bus(self, three_bus_radial, golden_voltage):
        """Flat start converges to the pinned voltages in at most 5 iterations."""
        result = solve_power_flow(three_bus_radial, Method.NEWTON_RAPHSON, tolerance=1e-8)
        magnitude, angle = golden_voltage
        assert result.converged
        assert result.iterations <= 5
        assert result.max_mismatch < 1e-8
        np.testing.assert_allclose(result.voltage_pu, magnitude, atol=1e-6)
        np.testing.assert_allclose(result.voltage_angle_rad, angle, atol=1e-6)

    def test_golden_ranges(self, three_bus_radial):
        result = solve_power_flow(three_bus_radial, Method.NEWTON_RAPHSON)
        assert np.all((result.voltage_angle_rad >= -0.05) & (result.voltage_angle_rad <= 0.0))
        assert np.all((result.voltage_pu >= 0.95) & (result.voltage_pu <= 1.0))

    def test_initial_mismatch(self, three_bus_radial):
        """At flat start the mismatch equals the specified demand."""
        handle = build(three_bus_radial, Method.NEWTON_RAPHSON)
        active, reactive = mismatch(handle)
        assert active == pytest.approx(0.1)
        assert reactive == pytest.approx(0.01)

    def test_mismatch_idempotent(self, three_bus_mesh):
        """Calling mismatch twice without a step returns the same values."""
        handle = build(three_bus_mesh, Method.NEWTON_RAPHSON)
        step(handle)
        assert mismatch(handle) == mismatch(handle)

    def test_step_returns_iteration_count(self, three_bus_mesh):
        handle = build(three_bus_mesh, Method.NEWTON_RAPHSON)
        mismatch(handle)
        assert step(handle) == 1
        assert step(handle) == 2
        assert handle.monitor.iterations == 2

    def test_step_without_mismatch(self, three_bus_mesh):
        """step() works even when mismatch() was not called first."""
        handle = build(three_bus_mesh, Method.NEWTON_RAPHSON)
        for _ in range(6):
            step(handle)
        assert max(mismatch(handle)) < 1e-8

    def test_pv_magnitude_held(self, three_bus_mesh):
        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        assert result.converged
        assert result.voltage_pu[2] == pytest.approx(1.02)
        assert result.voltage_pu[0] == pytest.approx(1.0)
        assert result.voltage_angle_rad[0] == 0.0

    def test_power_conservation_lossless(self, lossless_mesh):
        """Bus injections sum to zero on a lossless network."""
        result = solve_power_flow(lossless_mesh, Method.NEWTON_RAPHSON, tolerance=1e-10)
        assert result.converged
        assert result.p_inject_pu.sum() == pytest.approx(0.0, abs=1e-8)

    def test_warm_start(self, three_bus_radial, golden_voltage):
        """Starting from the solution needs no iterations."""
        magnitude, angle = golden_voltage
        for bus, v, theta in zip(three_bus_radial.buses, magnitude, angle):
            bus.v_magnitude_pu = v
            bus.v_angle_rad = theta
        handle = build(three_bus_radial, Method.NEWTON_RAPHSON)
        assert max(mismatch(handle)) < 1e-6

    def test_caller_network_untouched(self, three_bus_radial):
        solve_power_flow(three_bus_radial, Method.NEWTON_RAPHSON)
        assert three_bus_radial.buses[1].v_magnitude_pu == 1.0

    def test_voltage_returns_copies(self, three_bus_radial):
        handle = build(three_bus_radial, Method.NEWTON_RAPHSON)
        magnitude, _ = voltage(handle)
        magnitude[1] = 5.0
        assert voltage(handle)[0][1] == 1.0

    def test_islanded_network_singular(self, islanded_network):
        """A PQ bus without a path to the slack gives a singular Jacobian."""
        handle = build(islanded_network, Method.NEWTON_RAPHSON)
        with pytest.raises(SingularSystemError):
            step(handle)

    def test_iteration_cap_reported(self, three_bus_mesh):
        """Hitting the cap is not fatal; the result reports non-convergence."""
        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON, max_iter=1)
        assert not result.converged
        assert result.iterations == 1
        assert result.handle is not None
        assert _iterate(result.handle)

    def test_qr_matches_lu(self, three_bus_mesh):
        lu = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        qr = solve_power_flow(
            three_bus_mesh, Method.NEWTON_RAPHSON,
            options=SolverOptions(linear_solver=LinearSolver.QR),
        )
        np.testing.assert_allclose(qr.voltage_pu, lu.voltage_pu, atol=1e-9)
        np.testing.assert_allclose(qr.voltage_angle_rad, lu.voltage_angle_rad, atol=1e-9)

    def test_threaded_fill_matches_serial(self, three_bus_mesh):
        """Jacobian filled by several workers equals the serial fill."""
        classification = classify_buses(three_bus_mesh)
        admittance = build_admittance(three_bus_mesh)
        magnitude, angle = initial_voltage(three_bus_mesh, classification)
        angle = angle + np.array([0.0, -0.03, 0.01])
        p_spec, q_spec = three_bus_mesh.specified_injections()

        serial = NewtonRaphsonSolver(admittance, classification, p_spec, q_spec, magnitude, angle)
        threaded = NewtonRaphsonSolver(
            admittance, classification, p_spec, q_spec, magnitude, angle, workers=3,
        )
        np.testing.assert_allclose(
            threaded.fill_jacobian().toarray(), serial.fill_jacobian().toarray(),
        )

    def test_jacobian_matches_finite_difference(self, three_bus_mesh):
        """Analytic Jacobian agrees with a central difference of the mismatch."""
        classification = classify_buses(three_bus_mesh)
        admittance = build_admittance(three_bus_mesh)
        magnitude, angle = initial_voltage(three_bus_mesh, classification)
        angle = angle + np.array([0.0, -0.05, 0.02])
        magnitude = magnitude * np.array([1.0, 0.97, 1.0])
        p_spec, q_spec = three_bus_mesh.specified_injections()
        solver = NewtonRaphsonSolver(admittance, classification, p_spec, q_spec, magnitude, angle)
        jacobian = solver.fill_jacobian().toarray()

        numbering = solver.numbering
        h = 1e-6
        numeric = np.zeros_like(jacobian)
        for k in range(numbering.size):
            columns = []
            for sign in (1.0, -1.0):
                perturbed = NewtonRaphsonSolver(
                    admittance, classification, p_spec, q_spec, magnitude, angle,
                )
                if k < numbering.n_angle:
                    perturbed.angle[numbering.pvpq[k]] += sign * h
                else:
                    perturbed.magnitude[numbering.pq[k - numbering.n_angle]] += sign * h
                perturbed.mismatch()
                columns.append(perturbed.mismatch_vector.copy())
            numeric[:, k] = (columns[0] - columns[1]) / (2 * h)
        np.testing.assert_allclose(jacobian, numeric, atol=1e-6)
