"""
Configuration resolution for forward runs.

Everything a run needs (backend, iterative limits, output flags, scheduling)
is validated here once and frozen into a `ForwardConfig` before any
computation touches the mesh.
"""

from __future__ import annotations

import enum
import numbers
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

import numpy as np

from nirforward import defaults
from nirforward.errors import InvalidArgument
from nirforward.solvers import FieldSolver, SolverKind, SolverRegistry, resolve_solver

# Option names accepted from plain mappings, including the legacy spellings
_OPTION_ALIASES: dict[str, str] = {
    "max_iterations": "max_iterations",
    "no_of_iter": "max_iterations",
    "abs_tolerance": "abs_tolerance",
    "tolerance": "abs_tolerance",
    "rel_tolerance": "rel_tolerance",
    "divergence_tolerance": "divergence_tolerance",
    "divergence_tol": "divergence_tolerance",
    "gpu_index": "gpu_index",
    "GPU": "gpu_index",
}


class FailurePolicy(enum.Enum):
    """What a wavelength failure does to the rest of the run."""

    ABORT = "abort"        # first failure propagates, run stops
    CONTINUE = "continue"  # failed wavelength is NaN-filled and reported


@dataclass(frozen=True)
class SolverOptions:
    """Iterative solver limits. Ignored by the direct backend."""
    max_iterations: int = defaults.DEFAULT_MAX_ITERATIONS
    abs_tolerance: float = defaults.DEFAULT_ABS_TOLERANCE
    rel_tolerance: float = defaults.DEFAULT_REL_TOLERANCE
    divergence_tolerance: float = defaults.DEFAULT_DIVERGENCE_TOLERANCE
    gpu_index: int = defaults.DEFAULT_GPU_INDEX

    def __post_init__(self) -> None:
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, numbers.Integral):
            raise InvalidArgument(f"max_iterations must be an integer, got {self.max_iterations!r}")
        if self.max_iterations < 1:
            raise InvalidArgument(f"max_iterations must be >= 1, got {self.max_iterations}")
        for name in ("abs_tolerance", "rel_tolerance", "divergence_tolerance"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real) or not np.isfinite(value) or value < 0:
                raise InvalidArgument(f"{name} must be a finite number >= 0, got {value!r}")
        if isinstance(self.gpu_index, bool) or not isinstance(self.gpu_index, numbers.Integral) or self.gpu_index < -1:
            raise InvalidArgument(f"gpu_index must be an integer >= -1, got {self.gpu_index!r}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> SolverOptions:
        """Build options from a mapping; unspecified entries keep their defaults.

        Raises:
            InvalidArgument: On unknown keys or invalid values.
        """
        values: dict[str, Any] = {}
        for key, value in mapping.items():
            name = _OPTION_ALIASES.get(key)
            if name is None:
                raise InvalidArgument(
                    f"Unknown solver option {key!r}. Recognized: {sorted(_OPTION_ALIASES)}"
                )
            values[name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def default_options() -> SolverOptions:
    """The standard option record."""
    return SolverOptions()


@dataclass(frozen=True)
class ForwardConfig:
    """Fully resolved, read-only configuration of one forward run."""
    solver: SolverKind
    backend: FieldSolver
    options: SolverOptions
    keep_field: bool = defaults.DEFAULT_KEEP_FIELD
    failure_policy: FailurePolicy = FailurePolicy.ABORT
    max_workers: int = defaults.DEFAULT_MAX_WORKERS


def _resolve_keep_field(keep_field: Any) -> bool:
    if isinstance(keep_field, (bool, numbers.Number, np.generic)):
        return bool(keep_field)
    if isinstance(keep_field, np.ndarray) and keep_field.size == 1:
        return bool(keep_field.reshape(-1)[0])
    raise InvalidArgument(f"Bad keep_field value. Scalar expected, got {type(keep_field).__name__}")


def _resolve_options(options: Any) -> SolverOptions:
    if options is None:
        return default_options()
    if isinstance(options, SolverOptions):
        return options
    if isinstance(options, Mapping):
        return SolverOptions.from_mapping(options)
    raise InvalidArgument(f"Bad options value. Structure expected, got {type(options).__name__}")


def resolve_config(
    solver: str | SolverKind | None = None,
    options: SolverOptions | Mapping[str, Any] | None = None,
    keep_field: Any = defaults.DEFAULT_KEEP_FIELD,
    failure_policy: str | FailurePolicy = defaults.DEFAULT_FAILURE_POLICY,
    max_workers: int = defaults.DEFAULT_MAX_WORKERS,
) -> ForwardConfig:
    """
    Validate and normalize the optional arguments of a forward run.

    Args:
        solver: Backend name, alias or `SolverKind`; None selects the default
        options: `SolverOptions` or a mapping of option names to values
        keep_field: Scalar flag; keep the full nodal fluence in the result
        failure_policy: "abort" or "continue"
        max_workers: Number of wavelengths solved concurrently

    Raises:
        InvalidArgument: On mistyped or out-of-range arguments.
        UnknownSolver: If `solver` names no registered backend.
    """
    if solver is not None and not isinstance(solver, (str, SolverKind)):
        raise InvalidArgument(f"Bad solver value. Text expected, got {type(solver).__name__}")
    resolved_options = _resolve_options(options)
    keep = _resolve_keep_field(keep_field)

    try:
        policy = FailurePolicy(failure_policy)
    except ValueError as e:
        raise InvalidArgument(
            f"failure_policy must be one of {[p.value for p in FailurePolicy]}, got {failure_policy!r}"
        ) from e

    if isinstance(max_workers, bool) or not isinstance(max_workers, numbers.Integral) or max_workers < 1:
        raise InvalidArgument(f"max_workers must be an integer >= 1, got {max_workers!r}")

    kind = resolve_solver(solver)
    return ForwardConfig(
        solver=kind,
        backend=SolverRegistry.get(kind),
        options=resolved_options,
        keep_field=keep,
        failure_policy=policy,
        max_workers=int(max_workers),
    )
