"""Direct linear solvers: sparse LU, dense LDLt and dense QR.

LU (SuperLU through ``scipy.sparse.linalg.splu``) is the default. LDLt
requires a symmetric matrix. Every failure surfaces as
``SingularSystemError``; no fallback solution is produced.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
import scipy.linalg as la
import scipy.sparse as sp
from scipy.sparse.linalg import splu

from acflow.core.exceptions import ConfigurationError, SingularSystemError
from acflow.network.sparse import CompressedColumn


class LinearSolver(str, Enum):
    LU = "lu"
    LDLT = "ldlt"
    QR = "qr"


class Factorization:
    """A factorized square matrix that can solve against many right-hand sides."""

    strategy: LinearSolver

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _checked(self, x: np.ndarray) -> np.ndarray:
        if not np.all(np.isfinite(x)):
            raise SingularSystemError(
                f"{self.strategy.value.upper()} solve produced non-finite values"
            )
        return x


class LUFactorization(Factorization):
    """Sparse LU with row/column permutations and row scaling held by SuperLU."""

    strategy = LinearSolver.LU

    def __init__(self, matrix: sp.csc_matrix) -> None:
        try:
            self._lu = splu(matrix)
        except RuntimeError as exc:
            raise SingularSystemError(f"LU factorization failed: {exc}") from exc

    @property
    def lower(self) -> sp.csc_matrix:
        return self._lu.L

    @property
    def upper(self) -> sp.csc_matrix:
        return self._lu.U

    @property
    def row_permutation(self) -> np.ndarray:
        return self._lu.perm_r

    @property
    def column_permutation(self) -> np.ndarray:
        return self._lu.perm_c

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        return self._checked(self._lu.solve(rhs))


class LDLtFactorization(Factorization):
    """Bunch-Kaufman LDLt of a symmetric matrix."""

    strategy = LinearSolver.LDLT

    def __init__(self, matrix: sp.csc_matrix) -> None:
        dense = matrix.toarray()
        if not np.allclose(dense, dense.T, rtol=1e-10, atol=1e-12):
            raise ConfigurationError("LDLt factorization requires a symmetric matrix")
        lu, d, perm = la.ldl(dense, lower=True)
        self._lower = lu[perm]
        self._d = d
        self._perm = perm

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        y = la.solve_triangular(self._lower, rhs[self._perm], lower=True, unit_diagonal=True)
        try:
            z = la.solve(self._d, y)
        except la.LinAlgError as exc:
            raise SingularSystemError(f"LDLt solve failed: {exc}") from exc
        w = la.solve_triangular(self._lower.T, z, lower=False, unit_diagonal=True)
        x = np.empty_like(w)
        x[self._perm] = w
        return self._checked(x)


class QRFactorization(Factorization):
    """Householder QR; rank deficiency is detected on the diagonal of R."""

    strategy = LinearSolver.QR

    def __init__(self, matrix: sp.csc_matrix) -> None:
        self._q, self._r = la.qr(matrix.toarray())
        diag = np.abs(np.diag(self._r))
        scale = diag.max(initial=0.0)
        if diag.size and diag.min() <= scale * np.finfo(float).eps * max(diag.size, 1):
            raise SingularSystemError("QR factorization failed: matrix is rank deficient")

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        x = la.solve_triangular(self._r, self._q.T @ rhs, lower=False)
        return self._checked(x)


class EmptyFactorization(Factorization):
    """Factorization of a 0x0 system (no unknowns of this kind)."""

    strategy = LinearSolver.LU

    def solve(self, rhs: np.ndarray) -> np.ndarray:
        return np.zeros(0)


_STRATEGIES: dict[LinearSolver, type[Factorization]] = {
    LinearSolver.LU: LUFactorization,
    LinearSolver.LDLT: LDLtFactorization,
    LinearSolver.QR: QRFactorization,
}


def factorize(matrix: CompressedColumn | sp.csc_matrix, strategy: LinearSolver) -> Factorization:
    """Factorize a square sparse matrix with the selected strategy."""
    if isinstance(matrix, CompressedColumn):
        matrix = matrix.to_scipy()
    if matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"Cannot factorize a non-square {matrix.shape} matrix")
    if matrix.shape[0] == 0:
        return EmptyFactorization()
    return _STRATEGIES[LinearSolver(strategy)](matrix)
