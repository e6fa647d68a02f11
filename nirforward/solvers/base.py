"""
Base classes for field solver backends.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from nirforward.assembly import assemble_system_matrix

if TYPE_CHECKING:
    from nirforward.config import SolverOptions
    from nirforward.types import SpectralMesh


class SolverKind(enum.Enum):
    """Closed set of solve strategies."""

    DIRECT = "direct"
    CPU_ITERATIVE = "cpu-iterative"
    GPU_ITERATIVE = "gpu-iterative"


# Per-column status codes of the iterative backends
STATUS_CONVERGED = 0
STATUS_MAX_ITERATIONS = 1
STATUS_DIVERGED = 3
STATUS_BREAKDOWN = 4
STATUS_NOT_SOLVED = -1


@dataclass
class ColumnDiagnostics:
    """Convergence record of an iterative solve, one entry per source column."""
    iterations: np.ndarray
    tolerances: np.ndarray
    is_converged: np.ndarray
    is_converged_to_abs_tol: np.ndarray
    status: np.ndarray

    @classmethod
    def allocate(cls, n_columns: int) -> ColumnDiagnostics:
        return cls(
            iterations=np.zeros(n_columns, dtype=np.int64),
            tolerances=np.full(n_columns, np.nan),
            is_converged=np.zeros(n_columns, dtype=bool),
            is_converged_to_abs_tol=np.zeros(n_columns, dtype=bool),
            status=np.full(n_columns, STATUS_NOT_SOLVED, dtype=np.int64),
        )

    def record(self, column: int, iterations: int, residual: float, status: int, abs_tolerance: float) -> None:
        self.iterations[column] = iterations
        self.tolerances[column] = residual
        self.status[column] = status
        self.is_converged[column] = status == STATUS_CONVERGED
        self.is_converged_to_abs_tol[column] = bool(residual <= abs_tolerance)


@dataclass
class SolveOutcome:
    """Fluence field of one wavelength plus optional diagnostics."""
    phi: np.ndarray
    diagnostics: ColumnDiagnostics | None = None


class FieldSolver:
    """
    Uniform contract shared by every backend.

    `assemble` turns a single-wavelength mesh snapshot into COO triplets,
    `solve` turns triplets plus the source matrix into the fluence field.
    `run` chains both and is what the wavelength loop calls.
    """

    kind: SolverKind
    display_name: str = ""
    iterative: bool = False

    def assemble(self, mesh: SpectralMesh, frequency: float, options: SolverOptions) -> tuple[Any, Any, Any]:
        return assemble_system_matrix(mesh, frequency)

    def solve(self, rows: Any, cols: Any, values: Any, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        raise NotImplementedError

    def run(self, mesh: SpectralMesh, frequency: float, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        rows, cols, values = self.assemble(mesh, frequency, options)
        return self.solve(rows, cols, values, qvec, options)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value})"
