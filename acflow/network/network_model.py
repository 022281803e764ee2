"""Network topology model: buses, branches and generators in per-unit.

The model is plain data. Solvers never mutate a caller's instance; the
power-flow API works on its own deep copy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from acflow.core.exceptions import ConfigurationError


class BusType(str, Enum):
    SLACK = "slack"
    PV = "pv"
    PQ = "pq"


@dataclass
class BusData:
    """Single bus definition."""
    index: int
    name: str
    bus_type: BusType = BusType.PQ
    # Aggregate demand (per-unit on system base)
    p_load_pu: float = 0.0
    q_load_pu: float = 0.0
    # Shunt admittance
    g_shunt_pu: float = 0.0
    b_shunt_pu: float = 0.0
    # Last-known voltage, used as the starting point of a solve
    v_magnitude_pu: float = 1.0
    v_angle_rad: float = 0.0


@dataclass
class BranchData:
    """Single branch (line or transformer) in pi-model form."""
    index: int
    name: str
    from_bus: int  # bus index
    to_bus: int    # bus index
    r_pu: float = 0.0
    x_pu: float = 0.0
    # Total charging susceptance and conductance
    b_pu: float = 0.0
    g_pu: float = 0.0
    # Off-nominal tap ratio; 0 means "no transformer"
    tap: float = 0.0
    shift_rad: float = 0.0
    in_service: bool = True

    @property
    def tap_ratio(self) -> float:
        """Tap magnitude with 0 normalized to 1.0."""
        return self.tap if self.tap != 0 else 1.0

    @property
    def z_pu(self) -> complex:
        return complex(self.r_pu, self.x_pu)


@dataclass
class GeneratorData:
    """Single generating unit attached to a bus."""
    index: int
    name: str
    bus: int
    p_gen_pu: float = 0.0
    q_gen_pu: float = 0.0
    v_setpoint_pu: float = 1.0
    q_min_pu: float = -math.inf
    q_max_pu: float = math.inf
    in_service: bool = True


@dataclass
class NetworkModel:
    """Complete network model."""
    buses: list[BusData] = field(default_factory=list)
    branches: list[BranchData] = field(default_factory=list)
    generators: list[GeneratorData] = field(default_factory=list)
    s_base_mva: float = 100.0

    @property
    def n_bus(self) -> int:
        return len(self.buses)

    @property
    def n_branch(self) -> int:
        return len(self.branches)

    def generators_at(self, bus_idx: int) -> list[GeneratorData]:
        """In-service generators attached to a bus, in index order."""
        return [
            g for g in self.generators
            if g.bus == bus_idx and g.in_service
        ]

    def in_service_generator_count(self) -> np.ndarray:
        count = np.zeros(self.n_bus, dtype=np.int64)
        for gen in self.generators:
            if gen.in_service:
                count[gen.bus] += 1
        return count

    def supply(self) -> tuple[np.ndarray, np.ndarray]:
        """Aggregate in-service generator output (P, Q) per bus."""
        p = np.zeros(self.n_bus)
        q = np.zeros(self.n_bus)
        for gen in self.generators:
            if gen.in_service:
                p[gen.bus] += gen.p_gen_pu
                q[gen.bus] += gen.q_gen_pu
        return p, q

    def demand(self) -> tuple[np.ndarray, np.ndarray]:
        p = np.array([b.p_load_pu for b in self.buses], dtype=np.float64)
        q = np.array([b.q_load_pu for b in self.buses], dtype=np.float64)
        return p, q

    def specified_injections(self) -> tuple[np.ndarray, np.ndarray]:
        """Net specified injections: supply minus demand."""
        p_gen, q_gen = self.supply()
        p_load, q_load = self.demand()
        return p_gen - p_load, q_gen - q_load

    def validate(self) -> None:
        """Check indices and branch impedances before any matrix assembly."""
        for position, bus in enumerate(self.buses):
            if bus.index != position:
                raise ConfigurationError(
                    f"Bus '{bus.name}' has index {bus.index}, expected {position}; "
                    "bus indices must be contiguous from 0"
                )
        n = self.n_bus
        for position, br in enumerate(self.branches):
            if br.index != position:
                raise ConfigurationError(
                    f"Branch '{br.name}' has index {br.index}, expected {position}"
                )
            for end in (br.from_bus, br.to_bus):
                if not 0 <= end < n:
                    raise ConfigurationError(
                        f"Branch '{br.name}' references unknown bus index {end}"
                    )
            if br.in_service and abs(br.z_pu) < 1e-12:
                raise ConfigurationError(
                    f"Branch '{br.name}' has zero series impedance"
                )
        for position, gen in enumerate(self.generators):
            if gen.index != position:
                raise ConfigurationError(
                    f"Generator '{gen.name}' has index {gen.index}, expected {position}"
                )
            if not 0 <= gen.bus < n:
                raise ConfigurationError(
                    f"Generator '{gen.name}' references unknown bus index {gen.bus}"
                )

    # ------------------------------------------------------------------
    # Topology edits (used by the incremental update manager)
    # ------------------------------------------------------------------

    def add_bus(self, bus: BusData) -> None:
        if bus.index != self.n_bus:
            raise ConfigurationError(
                f"New bus '{bus.name}' must take the next free index {self.n_bus}"
            )
        self.buses.append(bus)

    def remove_bus(self, bus_idx: int) -> None:
        """Remove a bus with its branches and generators, then renumber."""
        if not 0 <= bus_idx < self.n_bus:
            raise ConfigurationError(f"Bus index {bus_idx} not found")

        def shift(idx: int) -> int:
            return idx - 1 if idx > bus_idx else idx

        del self.buses[bus_idx]
        for position, bus in enumerate(self.buses):
            bus.index = position

        self.branches = [
            br for br in self.branches
            if bus_idx not in (br.from_bus, br.to_bus)
        ]
        for position, br in enumerate(self.branches):
            br.index = position
            br.from_bus = shift(br.from_bus)
            br.to_bus = shift(br.to_bus)

        self.generators = [g for g in self.generators if g.bus != bus_idx]
        for position, gen in enumerate(self.generators):
            gen.index = position
            gen.bus = shift(gen.bus)


def build_network_from_config(
    buses_config: list[dict],
    branches_config: list[dict],
    generators_config: list[dict] | None = None,
    s_base_mva: float = 100.0,
) -> NetworkModel:
    """Build a NetworkModel from configuration dictionaries.

    Args:
        buses_config: list of bus dicts with keys:
            name, bus_type, and optional p_load_pu, q_load_pu, g_shunt_pu,
            b_shunt_pu, v_magnitude_pu, v_angle_rad
        branches_config: list of branch dicts with keys:
            name, from_bus_idx, to_bus_idx, r_pu, x_pu, and optional
            b_pu, g_pu, tap, shift_rad, in_service
        generators_config: list of generator dicts with keys:
            name, bus_idx, and optional p_gen_pu, q_gen_pu, v_setpoint_pu,
            q_min_pu, q_max_pu, in_service
        s_base_mva: system base MVA
    """
    buses = []
    for i, bc in enumerate(buses_config):
        buses.append(BusData(
            index=i,
            name=bc["name"],
            bus_type=BusType(bc.get("bus_type", "pq")),
            p_load_pu=bc.get("p_load_pu", 0.0),
            q_load_pu=bc.get("q_load_pu", 0.0),
            g_shunt_pu=bc.get("g_shunt_pu", 0.0),
            b_shunt_pu=bc.get("b_shunt_pu", 0.0),
            v_magnitude_pu=bc.get("v_magnitude_pu", 1.0),
            v_angle_rad=bc.get("v_angle_rad", 0.0),
        ))

    branches = []
    for i, brc in enumerate(branches_config):
        branches.append(BranchData(
            index=i,
            name=brc["name"],
            from_bus=brc["from_bus_idx"],
            to_bus=brc["to_bus_idx"],
            r_pu=brc.get("r_pu", 0.0),
            x_pu=brc.get("x_pu", 0.0),
            b_pu=brc.get("b_pu", 0.0),
            g_pu=brc.get("g_pu", 0.0),
            tap=brc.get("tap", 0.0),
            shift_rad=brc.get("shift_rad", 0.0),
            in_service=brc.get("in_service", True),
        ))

    generators = []
    for i, gc in enumerate(generators_config or []):
        generators.append(GeneratorData(
            index=i,
            name=gc["name"],
            bus=gc["bus_idx"],
            p_gen_pu=gc.get("p_gen_pu", 0.0),
            q_gen_pu=gc.get("q_gen_pu", 0.0),
            v_setpoint_pu=gc.get("v_setpoint_pu", 1.0),
            q_min_pu=gc.get("q_min_pu", -math.inf),
            q_max_pu=gc.get("q_max_pu", math.inf),
            in_service=gc.get("in_service", True),
        ))

    network = NetworkModel(
        buses=buses, branches=branches, generators=generators, s_base_mva=s_base_mva,
    )
    network.validate()
    return network
