"""Sparse fixel-fixel graph used for connectivity and smoothing weights."""

from typing import Dict, Iterator, Tuple

import numpy as np
from scipy import sparse


class FixelGraph:
    """Immutable sparse mapping ``fixel -> {neighbour -> value}``.

    Rows are stored in compressed sparse row form, so each row is a map
    sorted by neighbour id. A dense N x N matrix is never built.

    Args:
        matrix: Square sparse matrix; converted to CSR with sorted indices.
    """

    def __init__(self, matrix: sparse.spmatrix):
        matrix = sparse.csr_matrix(matrix, dtype=np.float64, copy=True)
        if matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Fixel graph must be square, got shape {matrix.shape}")
        matrix.sum_duplicates()
        matrix.sort_indices()
        self._matrix = matrix

    @property
    def matrix(self) -> sparse.csr_matrix:
        """The underlying CSR matrix (do not modify)."""
        return self._matrix

    @property
    def n_fixels(self) -> int:
        return self._matrix.shape[0]

    @property
    def nnz(self) -> int:
        """Number of stored entries, self-entries included."""
        return self._matrix.nnz

    def __len__(self) -> int:
        return self.n_fixels

    def row(self, fixel: int) -> Dict[int, float]:
        """Neighbours of ``fixel`` and their values."""
        assert 0 <= fixel < self.n_fixels, f"fixel id {fixel} out of range"
        start, stop = self._matrix.indptr[fixel], self._matrix.indptr[fixel + 1]
        return dict(zip(self._matrix.indices[start:stop].tolist(),
                        self._matrix.data[start:stop].tolist()))

    def __getitem__(self, pair: Tuple[int, int]) -> float:
        """Value of the entry ``(f, g)``; 0.0 if absent."""
        f, g = pair
        return self.row(f).get(int(g), 0.0)

    def __contains__(self, pair: Tuple[int, int]) -> bool:
        f, g = pair
        return int(g) in self.row(f)

    def items(self) -> Iterator[Tuple[int, Dict[int, float]]]:
        for fixel in range(self.n_fixels):
            yield fixel, self.row(fixel)

    def row_sums(self) -> np.ndarray:
        return np.asarray(self._matrix.sum(axis=1)).reshape(-1)

    def has_self_entries(self) -> bool:
        """Whether every fixel has a stored, non-zero self-entry."""
        return bool(np.all(self._matrix.diagonal() != 0))

    def is_symmetric(self, tolerance: float = 0.0) -> bool:
        """Whether entries and their values are mirrored across the diagonal."""
        transposed = self._matrix.T.tocsr()
        transposed.sort_indices()
        if not (np.array_equal(self._matrix.indptr, transposed.indptr)
                and np.array_equal(self._matrix.indices, transposed.indices)):
            return False
        return bool(np.all(np.abs(self._matrix.data - transposed.data) <= tolerance))
