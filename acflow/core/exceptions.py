"""Error taxonomy for the power-flow engine.

Each error also derives from the builtin a plain numerical routine would
raise, so callers catching ``ValueError`` or ``ArithmeticError`` keep working.
"""

from __future__ import annotations


class PowerFlowError(Exception):
    """Base class for every error raised by acflow."""


class ConfigurationError(PowerFlowError, ValueError):
    """The network cannot be solved as given (no reference bus, bad indices)."""


class SingularSystemError(PowerFlowError, ArithmeticError):
    """A direct linear solve failed, e.g. an islanded subnetwork."""


class NonConvergenceError(PowerFlowError, RuntimeError):
    """Results were requested from a solver that has not converged."""


class IncompatibleEditError(PowerFlowError, RuntimeError):
    """An edit cannot be applied to a live solver; rebuild it instead."""
