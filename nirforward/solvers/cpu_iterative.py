"""CPU iterative backend: Jacobi-preconditioned BiCGStab from SciPy, one solve per source."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import diags
from scipy.sparse.linalg import bicgstab

from .base import (
    STATUS_BREAKDOWN,
    STATUS_CONVERGED,
    STATUS_DIVERGED,
    STATUS_MAX_ITERATIONS,
    ColumnDiagnostics,
    FieldSolver,
    SolveOutcome,
    SolverKind,
)
from .direct import build_sparse_system

if TYPE_CHECKING:
    from nirforward.config import SolverOptions

logger = logging.getLogger(__name__)


class _Diverged(Exception):
    """Raised from the iteration callback to stop a diverging solve."""
    pass


class _IterationMonitor:
    """Counts iterations and watches the true residual for divergence."""

    def __init__(self, A, b: np.ndarray, b_norm: float, divergence_tolerance: float):
        self.A = A
        self.b = b
        self.limit = divergence_tolerance * b_norm
        self.iterations = 0
        self.last_x: np.ndarray | None = None

    def __call__(self, xk: np.ndarray) -> None:
        self.iterations += 1
        self.last_x = xk.copy()
        if np.linalg.norm(self.b - self.A @ xk) > self.limit:
            raise _Diverged


def jacobi_preconditioner(A):
    """Inverse-diagonal preconditioner, or None when the diagonal has zeros."""
    d = A.diagonal()
    if np.any(d == 0):
        return None
    return diags(1.0 / d)


class CPUIterativeSolver(FieldSolver):
    """BiCGStab on the CPU with per-column convergence diagnostics."""

    kind = SolverKind.CPU_ITERATIVE
    display_name = "BiCGStab (CPU)"
    iterative = True

    def solve(self, rows, cols, values, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        n, n_columns = qvec.shape
        A = build_sparse_system(rows, cols, values, n).tocsr()
        dtype = np.result_type(A.dtype, qvec.dtype)
        A = A.astype(dtype)
        M = jacobi_preconditioner(A)

        phi = np.zeros((n, n_columns), dtype=dtype)
        diagnostics = ColumnDiagnostics.allocate(n_columns)

        for col in range(n_columns):
            b = np.asarray(qvec[:, col], dtype=dtype)
            x, iterations, status = self._solve_column(A, b, M, options)
            residual = float(np.linalg.norm(b - A @ x))
            phi[:, col] = x
            diagnostics.record(col, iterations, residual, status, options.abs_tolerance)
            if status != STATUS_CONVERGED:
                logger.warning(
                    "BiCGStab column %d stopped with status %d after %d iterations (residual %.3e)",
                    col, status, iterations, residual,
                )

        return SolveOutcome(phi=phi, diagnostics=diagnostics)

    @staticmethod
    def _solve_column(A, b: np.ndarray, M, options: SolverOptions) -> tuple[np.ndarray, int, int]:
        b_norm = float(np.linalg.norm(b))
        if b_norm == 0.0:
            return np.zeros_like(b), 0, STATUS_CONVERGED

        monitor = _IterationMonitor(A, b, b_norm, options.divergence_tolerance)
        try:
            x, info = bicgstab(
                A, b,
                rtol=options.rel_tolerance,
                atol=options.abs_tolerance,
                maxiter=options.max_iterations,
                M=M,
                callback=monitor,
            )
        except _Diverged:
            return monitor.last_x, monitor.iterations, STATUS_DIVERGED

        iterations = monitor.iterations
        if info == 0:
            status = STATUS_CONVERGED
            # scipy returns on the half step without calling back
            iterations = max(iterations, 1)
        elif info > 0:
            status = STATUS_MAX_ITERATIONS
        else:
            status = STATUS_BREAKDOWN
        return x, iterations, status
