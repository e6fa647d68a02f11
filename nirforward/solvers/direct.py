"""Direct sparse factorization backend."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.linalg import splu

from nirforward.errors import SolveFailure
from .base import FieldSolver, SolveOutcome, SolverKind

if TYPE_CHECKING:
    from nirforward.config import SolverOptions


def build_sparse_system(rows: np.ndarray, cols: np.ndarray, values: np.ndarray, size: int):
    """CSC matrix from COO triplets, duplicates summed."""
    return coo_matrix((values, (rows, cols)), shape=(size, size)).tocsc()


class DirectSolver(FieldSolver):
    """Exact LU factorization shared by all source columns. No diagnostics."""

    kind = SolverKind.DIRECT
    display_name = "Direct (sparse LU)"

    def solve(self, rows, cols, values, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        n = qvec.shape[0]
        if qvec.shape[1] == 0:
            return SolveOutcome(phi=np.zeros_like(qvec))
        A = build_sparse_system(rows, cols, values, n)
        dtype = np.result_type(A.dtype, qvec.dtype)
        try:
            lu = splu(A.astype(dtype))
        except RuntimeError as e:
            raise SolveFailure(f"Sparse LU factorization failed: {e}") from e
        phi = lu.solve(np.asarray(qvec, dtype=dtype))
        if not np.all(np.isfinite(phi)):
            raise SolveFailure("Direct solve produced non-finite fluence")
        return SolveOutcome(phi=phi)
