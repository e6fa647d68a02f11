"""
Spectral frequency-domain forward model.

For every enabled wavelength of a spectral mesh: compose optical
properties, assemble and solve the diffusion system for all active sources,
and sample the fluence at the source-detector pairs of the link table.
"""

from __future__ import annotations

import logging
import numbers
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import numpy as np

from nirforward import defaults
from nirforward.boundary import extract_boundary_data
from nirforward.config import FailurePolicy, ForwardConfig, SolverOptions, resolve_config
from nirforward.errors import InvalidArgument
from nirforward.mesh_io import load_mesh
from nirforward.optics import compose_optical_properties
from nirforward.results import (
    ForwardResult,
    WavelengthStatus,
    build_convergence_info,
    format_result,
)
from nirforward.solvers import ColumnDiagnostics, SolverKind
from nirforward.sources import active_sources, build_source_vector
from nirforward.types import SpectralMesh

logger = logging.getLogger(__name__)


@dataclass
class WavelengthSolution:
    """Everything one wavelength contributes to the final record."""
    index: int
    phi: np.ndarray
    boundary: np.ndarray
    diagnostics: ColumnDiagnostics | None


def _prepare_mesh(mesh: SpectralMesh | str | os.PathLike) -> SpectralMesh:
    if isinstance(mesh, (str, os.PathLike)):
        mesh = load_mesh(Path(mesh))
    if not isinstance(mesh, SpectralMesh):
        raise InvalidArgument(f"Expected a SpectralMesh or a path to one, got {type(mesh).__name__}")
    if mesh.mesh_type != defaults.SPECTRAL_MESH_TYPE:
        logger.warning(
            "Mesh type is '%s'. '%s' expected. This might give unexpected results.",
            mesh.mesh_type, defaults.SPECTRAL_MESH_TYPE,
        )
    if mesh.wv is None:
        raise InvalidArgument("The mesh is missing the 'wv' field specifying wavelengths")
    mesh.validate()
    return mesh


def _check_frequency(frequency: Any) -> float:
    if isinstance(frequency, bool) or not isinstance(frequency, numbers.Real):
        raise InvalidArgument(f"Frequency must be a real number in Hz, got {frequency!r}")
    frequency = float(frequency)
    if not np.isfinite(frequency) or frequency < 0:
        raise InvalidArgument(f"Frequency must be finite and >= 0 Hz, got {frequency}")
    return frequency


def solve_wavelength(
    mesh: SpectralMesh,
    index: int,
    frequency: float,
    qvec: np.ndarray,
    source_labels: np.ndarray,
    config: ForwardConfig,
) -> WavelengthSolution:
    """Full pipeline for one wavelength, on a snapshot of the mesh."""
    wavelength = float(mesh.wv[index])
    logger.debug("Solving wavelength %d (%.1f nm) with %s", index, wavelength, config.backend)

    optical = compose_optical_properties(mesh, wavelength)
    snapshot = mesh.at_wavelength(index, optical)
    outcome = config.backend.run(snapshot, frequency, qvec, config.options)
    boundary = extract_boundary_data(snapshot, outcome.phi, source_labels)
    return WavelengthSolution(index=index, phi=outcome.phi, boundary=boundary, diagnostics=outcome.diagnostics)


def _worker_count(config: ForwardConfig, n_tasks: int) -> int:
    workers = min(config.max_workers, n_tasks)
    if config.solver is SolverKind.GPU_ITERATIVE and workers > 1:
        # one device per run; extra workers would only queue on its lock
        logger.debug("GPU backend: limiting %d workers to 1", workers)
        workers = 1
    return max(workers, 1)


def run_forward(mesh: SpectralMesh | str | os.PathLike, frequency: float, config: ForwardConfig) -> ForwardResult:
    """
    Run the forward model with an already resolved configuration.

    Wavelengths are independent: each worker owns one wavelength's pipeline
    and writes into the slot of that wavelength, so outputs are in
    wavelength order whatever the completion order.
    """
    frequency = _check_frequency(frequency)
    mesh = _prepare_mesh(mesh)

    # computed once from the full spectral link table
    qvec = build_source_vector(mesh, frequency)
    source_labels = active_sources(mesh.link)

    n_wv = mesh.wavelength_count
    enabled = mesh.enabled_wavelengths()

    phi = np.full((*qvec.shape, n_wv), np.nan, dtype=qvec.dtype) if config.keep_field else None
    boundary = np.full((mesh.link_row_count, n_wv), np.nan, dtype=np.complex128)
    diagnostics: list[ColumnDiagnostics | None] = [None] * n_wv
    status = [WavelengthStatus.SOLVED if on else WavelengthStatus.DISABLED for on in enabled]
    failures: dict[int, str] = {}

    tasks = [k for k in range(n_wv) if enabled[k]]
    for k in range(n_wv):
        if not enabled[k]:
            logger.debug("Wavelength %d (%.1f nm) disabled in link table", k, mesh.wv[k])

    def store(solution: WavelengthSolution) -> None:
        k = solution.index
        if phi is not None:
            phi[:, :, k] = solution.phi
        boundary[:, k] = solution.boundary
        diagnostics[k] = solution.diagnostics

    def fail(k: int, error: Exception) -> None:
        if config.failure_policy is FailurePolicy.ABORT:
            raise error
        logger.error("Wavelength %d (%.1f nm) failed: %s", k, mesh.wv[k], error, exc_info=error)
        status[k] = WavelengthStatus.FAILED
        failures[k] = f"{type(error).__name__}: {error}"

    workers = _worker_count(config, len(tasks))
    if workers == 1:
        for k in tasks:
            try:
                solution = solve_wavelength(mesh, k, frequency, qvec, source_labels, config)
            except Exception as e:
                fail(k, e)
            else:
                store(solution)
    else:
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="nirforward")
        try:
            futures: list[tuple[int, Future]] = [
                (k, executor.submit(solve_wavelength, mesh, k, frequency, qvec, source_labels, config))
                for k in tasks
            ]
            for k, future in futures:
                try:
                    solution = future.result()
                except Exception as e:
                    fail(k, e)
                else:
                    store(solution)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    info = None
    if config.backend.iterative:
        info = build_convergence_info(diagnostics, qvec.shape[1], config.options)

    n_failed = len(failures)
    if n_failed:
        logger.error("%d of %d wavelengths failed: %s", n_failed, n_wv, sorted(failures))
    logger.info(
        "Forward run finished: %d solved, %d disabled, %d failed (solver: %s)",
        status.count(WavelengthStatus.SOLVED),
        status.count(WavelengthStatus.DISABLED),
        n_failed,
        config.solver.value,
    )

    return format_result(
        boundary=boundary,
        phi=phi,
        link=mesh.link,
        wv=mesh.wv,
        status=status,
        failures=failures,
        info=info,
    )


def forward_spectral_fd(
    mesh: SpectralMesh | str | os.PathLike,
    frequency: float,
    solver: str | SolverKind | None = None,
    options: SolverOptions | Mapping[str, Any] | None = None,
    keep_field: Any = defaults.DEFAULT_KEEP_FIELD,
    *,
    failure_policy: str | FailurePolicy = defaults.DEFAULT_FAILURE_POLICY,
    max_workers: int = defaults.DEFAULT_MAX_WORKERS,
) -> ForwardResult:
    """
    Amplitude and phase at all enabled wavelengths of a spectral mesh.

    Args:
        mesh: Spectral mesh, or path to a .nirmesh archive
        frequency: Source modulation frequency in Hz (>= 0; 0 = continuous wave)
        solver: Backend name or `SolverKind`; default is GPU BiCGStab when a
            CUDA device is present, CPU BiCGStab otherwise
        options: Iterative solver limits, `SolverOptions` or a mapping
        keep_field: Keep the (nodes, sources, wavelengths) fluence in `phi`
        failure_policy: "abort" stops at the first failing wavelength,
            "continue" marks it failed and carries on
        max_workers: Wavelengths solved concurrently

    Returns:
        ForwardResult. Wavelengths with no enabled link entry hold NaN in
        `phi` and `complex`. `info` holds convergence statistics for the
        iterative backends and is None for the direct one.

    Raises:
        InvalidArgument: Mistyped arguments, mesh without wavelengths
        UnknownSolver: Unrecognized solver name
        AssemblyFailure, SolveFailure, DeviceUnavailable: From the backend,
            under the "abort" failure policy
    """
    config = resolve_config(
        solver=solver,
        options=options,
        keep_field=keep_field,
        failure_policy=failure_policy,
        max_workers=max_workers,
    )
    return run_forward(mesh, frequency, config)
