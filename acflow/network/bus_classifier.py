"""Bus-type repair run before any solver is constructed.

Rules, applied in order:
  1. A Generator (PV) bus with no in-service generator becomes Demand (PQ).
  2. A Slack bus with no in-service generator becomes Demand.
  3. With no Slack left, the first Generator bus (ascending index) that has
     an in-service generator is promoted to Slack.
  4. If no Slack can be found the network has no reference bus.

A Demand bus that has generators is never promoted. Classification returns
a new assignment; the network's own ``bus_type`` fields are left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from acflow.core.exceptions import ConfigurationError
from acflow.network.network_model import BusType, NetworkModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusTypeRepair:
    """One observable change made by the classifier."""
    bus: int
    before: BusType
    after: BusType
    reason: str


@dataclass(frozen=True)
class BusClassification:
    """Resolved bus types for one solver construction."""
    bus_types: tuple[BusType, ...]
    slack: int
    repairs: tuple[BusTypeRepair, ...] = field(default_factory=tuple)

    @property
    def n_bus(self) -> int:
        return len(self.bus_types)

    @property
    def pv(self) -> np.ndarray:
        return np.array(
            [i for i, t in enumerate(self.bus_types) if t == BusType.PV], dtype=np.int64
        )

    @property
    def pq(self) -> np.ndarray:
        return np.array(
            [i for i, t in enumerate(self.bus_types) if t == BusType.PQ], dtype=np.int64
        )

    @property
    def type_codes(self) -> np.ndarray:
        """Bus types as an array: 1 = PQ, 2 = PV, 3 = slack."""
        codes = {BusType.PQ: 1, BusType.PV: 2, BusType.SLACK: 3}
        return np.array([codes[t] for t in self.bus_types], dtype=np.int8)

    def same_partition(self, other: BusClassification) -> bool:
        return self.bus_types == other.bus_types


def classify_buses(network: NetworkModel) -> BusClassification:
    """Resolve bus types so that exactly one valid slack bus exists."""
    counts = network.in_service_generator_count()
    types = [bus.bus_type for bus in network.buses]
    repairs: list[BusTypeRepair] = []

    def change(i: int, after: BusType, reason: str) -> None:
        repairs.append(BusTypeRepair(bus=i, before=types[i], after=after, reason=reason))
        types[i] = after

    # Only the lowest-index slack is the reference
    slack = -1
    for i, bus_type in enumerate(types):
        if bus_type != BusType.SLACK:
            continue
        if slack < 0:
            slack = i
        else:
            change(i, BusType.PV, "additional slack bus treated as generator bus")

    # Rule 1
    for i, bus_type in enumerate(types):
        if bus_type == BusType.PV and counts[i] == 0:
            change(i, BusType.PQ, "generator bus without in-service generator")

    # Rule 2
    if slack >= 0 and counts[slack] == 0:
        change(slack, BusType.PQ, "slack bus without in-service generator")
        slack = -1

    # Rule 3
    if slack < 0:
        for i, bus_type in enumerate(types):
            if bus_type == BusType.PV and counts[i] > 0:
                change(i, BusType.SLACK, "first generator bus promoted to slack")
                slack = i
                break

    # Rule 4
    if slack < 0:
        raise ConfigurationError(
            "No generator bus with an in-service generator found; "
            "slack bus definition not possible"
        )

    for repair in repairs:
        name = network.buses[repair.bus].name
        logger.info(
            "Bus '%s' reclassified %s -> %s: %s",
            name, repair.before.value, repair.after.value, repair.reason,
            extra={"bus": repair.bus},
        )

    return BusClassification(bus_types=tuple(types), slack=slack, repairs=tuple(repairs))
