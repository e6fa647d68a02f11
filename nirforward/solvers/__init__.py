"""
Field solver backends: direct factorization, CPU BiCGStab and GPU BiCGStab.
"""

from .base import (
    STATUS_BREAKDOWN,
    STATUS_CONVERGED,
    STATUS_DIVERGED,
    STATUS_MAX_ITERATIONS,
    STATUS_NOT_SOLVED,
    ColumnDiagnostics,
    FieldSolver,
    SolveOutcome,
    SolverKind,
)
from .cpu_iterative import CPUIterativeSolver
from .direct import DirectSolver
from .gpu_iterative import GPUIterativeSolver
from .register import default_solver, register_all_solvers, resolve_solver
from .registry import SolverRegistry

register_all_solvers()

__all__ = [
    'CPUIterativeSolver',
    'ColumnDiagnostics',
    'DirectSolver',
    'FieldSolver',
    'GPUIterativeSolver',
    'STATUS_BREAKDOWN',
    'STATUS_CONVERGED',
    'STATUS_DIVERGED',
    'STATUS_MAX_ITERATIONS',
    'STATUS_NOT_SOLVED',
    'SolveOutcome',
    'SolverKind',
    'SolverRegistry',
    'default_solver',
    'register_all_solvers',
    'resolve_solver',
]
