"""acflow: AC power-flow solution engine.

Newton-Raphson, fast-decoupled (BX/XB) and Gauss-Seidel solvers over a
sparse nodal admittance model, with incremental edits of a live solver.
"""

__version__ = "0.1.0"
