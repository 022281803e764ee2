"""Logging and error types shared by the network and power-flow packages."""

from acflow.core.exceptions import (
    ConfigurationError,
    IncompatibleEditError,
    NonConvergenceError,
    PowerFlowError,
    SingularSystemError,
)

__all__ = [
    "ConfigurationError",
    "IncompatibleEditError",
    "NonConvergenceError",
    "PowerFlowError",
    "SingularSystemError",
]
