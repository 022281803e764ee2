"""Network data model, Y-bus construction and bus-type classification."""

from acflow.network.admittance import (
    AdmittanceMatrix,
    DcModel,
    build_admittance,
    build_dc_model,
    patch_admittance,
)
from acflow.network.bus_classifier import BusClassification, BusTypeRepair, classify_buses
from acflow.network.network_model import (
    BranchData,
    BusData,
    BusType,
    GeneratorData,
    NetworkModel,
    build_network_from_config,
)
from acflow.network.sparse import CompressedColumn

__all__ = [
    "AdmittanceMatrix",
    "BranchData",
    "BusClassification",
    "BusData",
    "BusType",
    "BusTypeRepair",
    "CompressedColumn",
    "DcModel",
    "GeneratorData",
    "NetworkModel",
    "build_admittance",
    "build_dc_model",
    "build_network_from_config",
    "classify_buses",
    "patch_admittance",
]
