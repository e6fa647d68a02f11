"""
Solver registration module.

`register_all_solvers()` runs when `nirforward.solvers` is imported; call it
again to restore the built-in backends after `SolverRegistry.clear()`.
"""

from nirforward.gpu import GPUContext
from .base import SolverKind
from .cpu_iterative import CPUIterativeSolver
from .direct import DirectSolver
from .gpu_iterative import GPUIterativeSolver
from .registry import SolverRegistry


def register_all_solvers() -> None:
    """Register the built-in backends with the global registry."""
    SolverRegistry.clear()

    # Exact sparse LU
    SolverRegistry.register(DirectSolver(), aliases=("backslash", "\\", "lu"))

    # BiCGStab on the host
    SolverRegistry.register(CPUIterativeSolver(), aliases=("cpu", "bicgstab", "bicgstab-cpu", "iterative"))

    # BiCGStab on a CUDA device
    SolverRegistry.register(GPUIterativeSolver(), aliases=("gpu", "cuda", "bicgstab-gpu", "bicgstab-cuda"))


def default_solver() -> SolverKind:
    """GPU iterative when a CUDA device is present, CPU iterative otherwise."""
    if GPUContext.is_available():
        return SolverKind.GPU_ITERATIVE
    return SolverKind.CPU_ITERATIVE


def resolve_solver(identifier: "str | SolverKind | None" = None) -> SolverKind:
    """Resolve a solver identifier; `None` selects `default_solver()`.

    Raises:
        UnknownSolver: If the identifier names no registered backend.
    """
    if SolverRegistry.is_empty():
        register_all_solvers()
    if identifier is None:
        return default_solver()
    return SolverRegistry.resolve(identifier)
