"""Result records and post-processing of boundary data into amplitude and phase."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from nirforward.solvers import STATUS_NOT_SOLVED, ColumnDiagnostics

if TYPE_CHECKING:
    from nirforward.config import SolverOptions


class WavelengthStatus(enum.Enum):
    """Outcome of one wavelength of a forward run."""

    SOLVED = "solved"
    DISABLED = "disabled"  # no enabled link entry, never solved
    FAILED = "failed"      # solve raised under the "continue" failure policy


@dataclass
class ConvergenceInfo:
    """Iterative solver statistics, (sources x wavelengths) matrices.

    Entries of wavelengths that were not solved hold iterations=-1,
    tolerance NaN, False flags and status -1.
    """
    iterations: np.ndarray
    tolerances: np.ndarray
    is_converged: np.ndarray
    is_converged_to_abs_tol: np.ndarray
    status: np.ndarray
    iterations_limit: int
    tolerance_limit: float
    relative_tolerance_limit: float
    divergence_tolerance_limit: float

    @property
    def all_converged(self) -> bool:
        """True when every solved (source, wavelength) entry converged."""
        solved = self.status != STATUS_NOT_SOLVED
        return bool(np.all(self.is_converged[solved]))


@dataclass
class ForwardResult:
    """Output of a spectral frequency-domain forward run.

    Attributes:
        phi: (nodes, sources, wavelengths) fluence rate, None unless kept
        complex: (link rows, wavelengths) complex fluence at detector pairs
        amplitude: |complex|
        phase: angle of `complex` in degrees, within [0, 360)
        link: Copy of the spectral link table
        wv: Copy of the wavelength list (nm)
        status: Per-wavelength outcome
        failures: Wavelength index -> error message for failed wavelengths
        info: Convergence statistics; None for the direct backend
    """
    phi: np.ndarray | None
    complex: np.ndarray
    amplitude: np.ndarray
    phase: np.ndarray
    link: np.ndarray
    wv: np.ndarray
    status: list[WavelengthStatus] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)
    info: ConvergenceInfo | None = None

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def amplitude_phase(data: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Magnitude and phase in degrees within [0, 360). NaN stays NaN."""
    amplitude = np.abs(data)
    phase = np.angle(data)
    negative = phase < 0
    phase[negative] += 2.0 * np.pi
    phase = np.degrees(phase)
    # tiny negative angles round up to exactly 360 after the shift
    phase[phase >= 360.0] -= 360.0
    return amplitude, phase


def build_convergence_info(
    per_wavelength: list[ColumnDiagnostics | None],
    n_sources: int,
    options: SolverOptions,
) -> ConvergenceInfo:
    """Stack per-wavelength column diagnostics into (sources x wavelengths) matrices."""
    n_wv = len(per_wavelength)
    iterations = np.full((n_sources, n_wv), -1, dtype=np.int64)
    tolerances = np.full((n_sources, n_wv), np.nan)
    is_converged = np.zeros((n_sources, n_wv), dtype=bool)
    is_converged_to_abs_tol = np.zeros((n_sources, n_wv), dtype=bool)
    status = np.full((n_sources, n_wv), STATUS_NOT_SOLVED, dtype=np.int64)

    for k, diag in enumerate(per_wavelength):
        if diag is None:
            continue
        iterations[:, k] = diag.iterations
        tolerances[:, k] = diag.tolerances
        is_converged[:, k] = diag.is_converged
        is_converged_to_abs_tol[:, k] = diag.is_converged_to_abs_tol
        status[:, k] = diag.status

    return ConvergenceInfo(
        iterations=iterations,
        tolerances=tolerances,
        is_converged=is_converged,
        is_converged_to_abs_tol=is_converged_to_abs_tol,
        status=status,
        iterations_limit=options.max_iterations,
        tolerance_limit=options.abs_tolerance,
        relative_tolerance_limit=options.rel_tolerance,
        divergence_tolerance_limit=options.divergence_tolerance,
    )


def format_result(
    boundary: np.ndarray,
    phi: np.ndarray | None,
    link: np.ndarray,
    wv: np.ndarray,
    status: list[WavelengthStatus],
    failures: dict[int, str],
    info: ConvergenceInfo | None,
) -> ForwardResult:
    """Derive amplitude/phase and assemble the final record."""
    boundary = np.asarray(boundary, dtype=np.complex128)
    amplitude, phase = amplitude_phase(boundary)
    return ForwardResult(
        phi=phi,
        complex=boundary,
        amplitude=amplitude,
        phase=phase,
        link=np.array(link, copy=True),
        wv=np.array(wv, copy=True),
        status=list(status),
        failures=dict(failures),
        info=info,
    )
