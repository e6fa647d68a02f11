"""
GPU iterative backend: Jacobi-preconditioned BiCGStab in PyTorch.

The sparse product is an index_add_ scatter over the COO triplets, which
runs on any torch device and dtype (float64 or complex128).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import torch

from nirforward.assembly import assemble_system_matrix_gpu
from nirforward.gpu import GPUContext
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

if TYPE_CHECKING:
    from nirforward.config import SolverOptions
    from nirforward.types import SpectralMesh

logger = logging.getLogger(__name__)


class COOOperator:
    """y = A x for a square COO matrix resident on a torch device."""

    def __init__(self, rows: torch.Tensor, cols: torch.Tensor, values: torch.Tensor, size: int):
        self.rows = rows
        self.cols = cols
        self.values = values
        self.size = size

    def diagonal(self) -> torch.Tensor:
        diag = torch.zeros(self.size, dtype=self.values.dtype, device=self.values.device)
        on_diag = self.rows == self.cols
        return diag.index_add_(0, self.rows[on_diag], self.values[on_diag])

    def __matmul__(self, x: torch.Tensor) -> torch.Tensor:
        y = torch.zeros(self.size, dtype=self.values.dtype, device=self.values.device)
        return y.index_add_(0, self.rows, self.values * x[self.cols])


def bicgstab_torch(
    A: COOOperator,
    b: torch.Tensor,
    inv_diag: torch.Tensor | None,
    max_iterations: int,
    abs_tolerance: float,
    rel_tolerance: float,
    divergence_tolerance: float,
) -> tuple[torch.Tensor, int, float, int]:
    """
    Right-preconditioned BiCGStab for a single right-hand side.

    Stops when ||r|| <= max(rel_tolerance * ||b||, abs_tolerance), when
    ||r|| > divergence_tolerance * ||b||, or on a zero inner product.

    Returns:
        (x, iterations, residual norm, status)
    """
    x = torch.zeros_like(b)
    b_norm = torch.linalg.vector_norm(b).item()
    if b_norm == 0.0:
        return x, 0, 0.0, STATUS_CONVERGED

    def precondition(v: torch.Tensor) -> torch.Tensor:
        return v if inv_diag is None else inv_diag * v

    target = max(rel_tolerance * b_norm, abs_tolerance)
    limit = divergence_tolerance * b_norm

    r = b.clone()
    r_hat = r.clone()
    p = torch.zeros_like(b)
    v = torch.zeros_like(b)
    rho_prev = alpha = omega = 1.0
    residual = b_norm

    for iteration in range(1, max_iterations + 1):
        rho = torch.vdot(r_hat, r).item()
        if rho == 0:
            return x, iteration, residual, STATUS_BREAKDOWN
        if iteration == 1:
            p = r.clone()
        else:
            beta = (rho / rho_prev) * (alpha / omega)
            p = r + beta * (p - omega * v)

        p_hat = precondition(p)
        v = A @ p_hat
        denom = torch.vdot(r_hat, v).item()
        if denom == 0:
            return x, iteration, residual, STATUS_BREAKDOWN
        alpha = rho / denom
        s = r - alpha * v

        s_norm = torch.linalg.vector_norm(s).item()
        if s_norm <= target:
            x = x + alpha * p_hat
            return x, iteration, s_norm, STATUS_CONVERGED

        s_hat = precondition(s)
        t = A @ s_hat
        tt = torch.vdot(t, t).item()
        if tt == 0:
            return x, iteration, residual, STATUS_BREAKDOWN
        omega = torch.vdot(t, s).item() / tt
        x = x + alpha * p_hat + omega * s_hat
        r = s - omega * t

        residual = torch.linalg.vector_norm(r).item()
        if residual <= target:
            return x, iteration, residual, STATUS_CONVERGED
        if residual > limit:
            return x, iteration, residual, STATUS_DIVERGED
        if omega == 0:
            return x, iteration, residual, STATUS_BREAKDOWN
        rho_prev = rho

    return x, max_iterations, residual, STATUS_MAX_ITERATIONS


class GPUIterativeSolver(FieldSolver):
    """
    BiCGStab on a CUDA device.

    The device comes from `options.gpu_index` unless the solver was built
    with an explicit `device`, which lets the same code run on the CPU torch
    device.
    """

    kind = SolverKind.GPU_ITERATIVE
    display_name = "BiCGStab (GPU)"
    iterative = True

    def __init__(self, device: str | torch.device | None = None):
        self._device = torch.device(device) if device is not None else None

    def device(self, options: SolverOptions) -> torch.device:
        if self._device is not None:
            return self._device
        return GPUContext.select_device(options.gpu_index)

    def assemble(self, mesh: SpectralMesh, frequency: float, options: SolverOptions):
        return assemble_system_matrix_gpu(mesh, frequency, self.device(options))

    def run(self, mesh: SpectralMesh, frequency: float, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        device = self.device(options)
        with GPUContext.device_lock(device):
            return super().run(mesh, frequency, qvec, options)

    def solve(self, rows, cols, values, qvec: np.ndarray, options: SolverOptions) -> SolveOutcome:
        device = self.device(options)
        n, n_columns = qvec.shape
        values = torch.as_tensor(values, device=device)
        dtype = torch.complex128 if (values.is_complex() or np.iscomplexobj(qvec)) else torch.float64
        A = COOOperator(
            torch.as_tensor(rows, device=device, dtype=torch.int64),
            torch.as_tensor(cols, device=device, dtype=torch.int64),
            values.to(dtype),
            n,
        )
        diag = A.diagonal()
        inv_diag = None if bool((diag == 0).any()) else 1.0 / diag

        q = GPUContext.to_gpu(qvec, device).to(dtype)
        phi = torch.zeros((n, n_columns), dtype=dtype, device=device)
        diagnostics = ColumnDiagnostics.allocate(n_columns)

        for col in range(n_columns):
            x, iterations, residual, status = bicgstab_torch(
                A, q[:, col].contiguous(), inv_diag,
                options.max_iterations,
                options.abs_tolerance,
                options.rel_tolerance,
                options.divergence_tolerance,
            )
            phi[:, col] = x
            diagnostics.record(col, iterations, residual, status, options.abs_tolerance)
            if status != STATUS_CONVERGED:
                logger.warning(
                    "GPU BiCGStab column %d stopped with status %d after %d iterations (residual %.3e)",
                    col, status, iterations, residual,
                )

        return SolveOutcome(phi=GPUContext.to_cpu(phi), diagnostics=diagnostics)
