"""Compressed-column sparse matrix with explicit pattern handling.

Construction (triplets to compressed form) and mutation are separate
operations: ``patch_values`` overwrites values for an identical pattern,
anything else requires building a new matrix.
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp
from numpy.typing import ArrayLike


class CompressedColumn:
    """Square or rectangular CSC matrix backed by ``scipy.sparse``."""

    def __init__(self, matrix: sp.csc_matrix) -> None:
        self._matrix = matrix

    @classmethod
    def from_triplets(
        cls,
        rows: ArrayLike,
        cols: ArrayLike,
        values: ArrayLike,
        shape: tuple[int, int],
        dtype=np.float64,
    ) -> CompressedColumn:
        """Assemble from (row, col, value) triplets; duplicates are summed.

        Explicit zeros survive: the pattern is structural, not numeric.
        """
        coo = sp.coo_matrix(
            (np.asarray(values, dtype=dtype),
             (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
            shape=shape,
        )
        matrix = coo.tocsc()
        matrix.sum_duplicates()
        matrix.sort_indices()
        return cls(matrix)

    @property
    def shape(self) -> tuple[int, int]:
        return self._matrix.shape

    @property
    def nnz(self) -> int:
        return self._matrix.nnz

    @property
    def indptr(self) -> np.ndarray:
        return self._matrix.indptr

    @property
    def indices(self) -> np.ndarray:
        return self._matrix.indices

    @property
    def data(self) -> np.ndarray:
        return self._matrix.data

    def to_scipy(self) -> sp.csc_matrix:
        return self._matrix

    def column(self, j: int) -> tuple[np.ndarray, np.ndarray]:
        """Row indices and values stored in column ``j``."""
        start, end = self._matrix.indptr[j], self._matrix.indptr[j + 1]
        return self._matrix.indices[start:end], self._matrix.data[start:end]

    def column_indices(self) -> np.ndarray:
        """Column index of every stored entry, parallel to ``data``."""
        return np.repeat(
            np.arange(self.shape[1], dtype=np.int64), np.diff(self._matrix.indptr)
        )

    def position(self, i: int, j: int) -> int:
        """Storage offset of entry (i, j), or -1 if it is not in the pattern."""
        rows, _ = self.column(j)
        k = int(np.searchsorted(rows, i))
        if k < len(rows) and rows[k] == i:
            return int(self._matrix.indptr[j] + k)
        return -1

    def diagonal_positions(self) -> np.ndarray:
        n = min(self.shape)
        return np.array([self.position(i, i) for i in range(n)], dtype=np.int64)

    def get(self, i: int, j: int):
        k = self.position(i, j)
        return self._matrix.data[k] if k >= 0 else self._matrix.dtype.type(0)

    def same_pattern(self, other: CompressedColumn) -> bool:
        return (
            self.shape == other.shape
            and np.array_equal(self.indptr, other.indptr)
            and np.array_equal(self.indices, other.indices)
        )

    def patch_values(self, other: CompressedColumn) -> None:
        """Copy values from a matrix with the identical pattern, in place."""
        if not self.same_pattern(other):
            raise ValueError("Cannot patch values: sparsity pattern differs")
        self._matrix.data[:] = other.data

    def transpose(self) -> CompressedColumn:
        matrix = self._matrix.transpose().tocsc()
        matrix.sort_indices()
        return CompressedColumn(matrix)

    def toarray(self) -> np.ndarray:
        return self._matrix.toarray()

    def __matmul__(self, vector: np.ndarray) -> np.ndarray:
        return self._matrix @ vector
