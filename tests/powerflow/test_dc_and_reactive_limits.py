"""Tests for DC power flow and reactive-limit enforcement."""

from __future__ import annotations

import numpy as np
import pytest

from acflow.core.exceptions import ConfigurationError, NonConvergenceError, SingularSystemError
from acflow.network.network_model import BusType
from acflow.powerflow.api import build, solve_power_flow, voltage
from acflow.powerflow.dc_power_flow import dc_power_flow
from acflow.powerflow.handle import Method
from acflow.powerflow.reactive_limits import adjust_angle, check_reactive_limits


class TestDcPowerFlow:
    """Tests for the linear DC approximation."""

    def test_radial_angles(self, three_bus_radial):
        """θ = -P·x on each radial line from the slack."""
        result = dc_power_flow(three_bus_radial)
        np.testing.assert_allclose(result.voltage_angle_rad, [0.0, -0.005, -0.0005], atol=1e-12)

    def test_slack_supply_and_flows(self, three_bus_radial):
        result = dc_power_flow(three_bus_radial)
        assert result.slack == 0
        assert result.p_supply_pu[0] == pytest.approx(0.15)
        np.testing.assert_allclose(result.from_p_pu, [0.1, 0.05])
        np.testing.assert_allclose(result.to_p_pu, [-0.1, -0.05])

    def test_injections_balance(self, three_bus_mesh):
        result = dc_power_flow(three_bus_mesh)
        assert result.p_inject_pu.sum() == pytest.approx(0.0, abs=1e-12)

    def test_close_to_ac_angles(self, three_bus_radial):
        ac = solve_power_flow(three_bus_radial, Method.NEWTON_RAPHSON)
        dc = dc_power_flow(three_bus_radial)
        np.testing.assert_allclose(dc.voltage_angle_rad, ac.voltage_angle_rad, atol=1e-4)

    def test_phase_shifter_moves_flow(self, three_bus_mesh):
        """A phase shift on a mesh branch changes the angle difference it sees."""
        base = dc_power_flow(three_bus_mesh)
        three_bus_mesh.branches[2].shift_rad = 0.05
        shifted = dc_power_flow(three_bus_mesh)
        assert shifted.from_p_pu[2] != pytest.approx(base.from_p_pu[2])
        assert shifted.p_supply_pu[0] == pytest.approx(base.p_supply_pu[0])

    def test_islanded(self, islanded_network):
        with pytest.raises(SingularSystemError):
            dc_power_flow(islanded_network)

    def test_resistive_branch_rejected(self, three_bus_mesh):
        three_bus_mesh.branches[2].x_pu = 0.0
        three_bus_mesh.branches[2].r_pu = 0.05
        with pytest.raises(ConfigurationError, match="zero reactance"):
            dc_power_flow(three_bus_mesh)


class TestReactiveLimits:
    """Tests for generator reactive limits after an AC solve."""

    def test_no_violation(self, three_bus_mesh):
        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        limits = check_reactive_limits(result.handle)
        assert not limits.violated
        assert limits.network.buses[2].bus_type == BusType.PV

    def test_max_violation_converts_pv_bus(self, three_bus_mesh):
        q = solve_power_flow(three_bus_mesh).power.generator.q[1]
        three_bus_mesh.generators[1].q_max_pu = q - 0.05
        three_bus_mesh.generators[1].q_min_pu = q - 1.0

        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        limits = check_reactive_limits(result.handle)
        assert list(limits.violations) == [0, 1]
        assert limits.network.buses[2].bus_type == BusType.PQ
        assert limits.network.generators[1].q_gen_pu == pytest.approx(q - 0.05)

        clamped = solve_power_flow(limits.network, Method.NEWTON_RAPHSON)
        assert clamped.converged
        assert clamped.voltage_pu[2] < 1.02
        assert clamped.power.bus.injection_q[2] == pytest.approx(q - 0.05, abs=1e-7)

    def test_min_violation(self, three_bus_mesh):
        q = solve_power_flow(three_bus_mesh).power.generator.q[1]
        three_bus_mesh.generators[1].q_min_pu = q + 0.05
        three_bus_mesh.generators[1].q_max_pu = q + 1.0
        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        assert check_reactive_limits(result.handle).violations[1] == -1

    def test_slack_violation_moves_slack(self, three_bus_mesh):
        """A clamped slack unit hands the reference role to the first PV bus."""
        q = solve_power_flow(three_bus_mesh).power.generator.q[0]
        three_bus_mesh.generators[0].q_max_pu = q - 0.05
        three_bus_mesh.generators[0].q_min_pu = q - 1.0

        result = solve_power_flow(three_bus_mesh, Method.NEWTON_RAPHSON)
        limits = check_reactive_limits(result.handle)
        assert limits.violations[0] == 1
        assert limits.network.buses[0].bus_type == BusType.PQ
        assert limits.network.buses[2].bus_type == BusType.SLACK

        handle = solve_power_flow(limits.network, Method.NEWTON_RAPHSON).handle
        assert handle.classification.slack == 2
        adjust_angle(handle, 0)
        assert voltage(handle)[1][0] == pytest.approx(0.0, abs=1e-12)

    def test_slack_violation_without_pv_bus(self, three_bus_radial):
        q = solve_power_flow(three_bus_radial).power.generator.q[0]
        three_bus_radial.generators[0].q_max_pu = q - 0.01
        three_bus_radial.generators[0].q_min_pu = q - 1.0
        result = solve_power_flow(three_bus_radial, Method.NEWTON_RAPHSON)
        with pytest.raises(ConfigurationError, match="no generator bus"):
            check_reactive_limits(result.handle)

    def test_requires_convergence(self, three_bus_mesh):
        with pytest.raises(NonConvergenceError):
            check_reactive_limits(build(three_bus_mesh, Method.NEWTON_RAPHSON))

    def test_adjust_angle_gauss_seidel(self, three_bus_mesh):
        handle = solve_power_flow(three_bus_mesh, Method.GAUSS_SEIDEL).handle
        before = voltage(handle)
        adjust_angle(handle, 1)
        after = voltage(handle)
        assert after[1][1] == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(after[0], before[0])
        np.testing.assert_allclose(np.diff(after[1]), np.diff(before[1]), atol=1e-12)
