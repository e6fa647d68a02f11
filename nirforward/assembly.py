"""
Frequency-domain diffusion system matrix assembly.

Linear simplex elements, in units of mm:

    A = K(kappa) + M(mua - i*omega/c) + B(zeta)

K is the stiffness matrix weighted by the diffusion coefficient, M the mass
matrix weighted by the complex absorption term and B the Robin boundary term
with zeta = 1 / (2 A(n)) (Groenhuis mismatch factor). The -i*omega/c sign makes
the phase of the fluence a positive delay. Matrices are returned as
zero-based COO triplets; duplicates are summed by whoever builds the sparse
matrix.
"""

from __future__ import annotations

import logging
from math import factorial

import numba
import numpy as np
import torch

from nirforward import defaults
from nirforward.errors import AssemblyFailure
from nirforward.geometry import boundary_faces, simplex_measures
from nirforward.types import SpectralMesh

logger = logging.getLogger(__name__)


def boundary_mismatch_factor(ri: np.ndarray) -> np.ndarray:
    """zeta = 1 / (2 A) with A from the Fresnel reflection at an n/air interface."""
    ri = np.asarray(ri, dtype=np.float64)
    r0 = ((ri - 1.0) / (ri + 1.0)) ** 2
    cos_c = np.abs(np.cos(np.arcsin(1.0 / ri)))
    a = (2.0 / (1.0 - r0) - 1.0 + cos_c ** 3) / (1.0 - cos_c ** 2)
    return 1.0 / (2.0 * a)


def _absorption_term(mesh: SpectralMesh, frequency: float) -> np.ndarray:
    """Nodal mua - i*omega/c; real when frequency == 0."""
    if frequency == 0:
        return mesh.mua.astype(np.float64, copy=True)
    omega = 2.0 * np.pi * frequency
    c = defaults.SPEED_OF_LIGHT_MM_S / mesh.ri
    return mesh.mua - 1j * omega / c


def _check_inputs(mesh: SpectralMesh, frequency: float) -> None:
    if mesh.mua is None or mesh.kappa is None:
        raise AssemblyFailure("Mesh snapshot carries no optical properties (mua/kappa)")
    if not np.isfinite(frequency) or frequency < 0:
        raise AssemblyFailure(f"Frequency must be finite and >= 0, got {frequency}")
    for name, values in (("mua", mesh.mua), ("kappa", mesh.kappa), ("ri", mesh.ri)):
        if values.shape != (mesh.node_count,) or not np.all(np.isfinite(values)):
            raise AssemblyFailure(f"Nodal '{name}' must be {mesh.node_count} finite values")
    if np.any(mesh.ri < 1.0):
        raise AssemblyFailure("Refractive index must be >= 1 for the boundary condition")


@numba.njit(cache=True, nogil=True)
def _build_element_system(nodes, elements, kappa, absorption, rows, cols, values):
    """
    Fill COO triplets for the stiffness and mass contributions.

    Returns the index of the first degenerate element, or -1.
    """
    n_elements, n_local = elements.shape
    dim = nodes.shape[1]
    mass_scale = 1.0 / ((dim + 1) * (dim + 2))
    vol_scale = 1.0
    for k in range(2, dim + 1):
        vol_scale *= k

    edges = np.empty((dim, dim), dtype=np.float64)
    grads = np.empty((n_local, dim), dtype=np.float64)

    pos = 0
    for e in range(n_elements):
        v0 = elements[e, 0]
        for a in range(dim):
            for b in range(dim):
                edges[a, b] = nodes[elements[e, b + 1], a] - nodes[v0, a]

        det = np.linalg.det(edges)
        vol = abs(det) / vol_scale
        if vol <= 0.0:
            return e
        inv = np.linalg.inv(edges)

        # gradients of the barycentric coordinates
        for a in range(dim):
            grads[0, a] = 0.0
        for i in range(1, n_local):
            for a in range(dim):
                grads[i, a] = inv[i - 1, a]
                grads[0, a] -= inv[i - 1, a]

        kappa_e = 0.0
        absorption_e = absorption[v0] * 0.0
        for i in range(n_local):
            kappa_e += kappa[elements[e, i]]
            absorption_e += absorption[elements[e, i]]
        kappa_e /= n_local
        absorption_e /= n_local

        for i in range(n_local):
            for j in range(n_local):
                g = 0.0
                for a in range(dim):
                    g += grads[i, a] * grads[j, a]
                m = mass_scale * vol
                if i == j:
                    m *= 2.0
                rows[pos] = elements[e, i]
                cols[pos] = elements[e, j]
                values[pos] = kappa_e * vol * g + absorption_e * m
                pos += 1
    return -1


def _boundary_triplets(mesh: SpectralMesh, faces: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Robin term on the outer surface, vectorized over faces."""
    n_local = faces.shape[1]
    dim = mesh.dimension
    measure = simplex_measures(mesh.nodes, faces)
    zeta = boundary_mismatch_factor(mesh.ri)[faces].mean(axis=1)
    local = (np.ones((n_local, n_local)) + np.eye(n_local)) / (dim * (dim + 1))
    blocks = (zeta * measure)[:, None, None] * local[None, :, :]
    rows = np.repeat(faces, n_local, axis=1).ravel()
    cols = np.tile(faces, (1, n_local)).ravel()
    return rows, cols, blocks.ravel()


def assemble_system_matrix(mesh: SpectralMesh, frequency: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Assemble the system matrix on the CPU.

    Args:
        mesh: Single-wavelength snapshot carrying mua/kappa
        frequency: Modulation frequency in Hz (>= 0)

    Returns:
        (rows, cols, values) COO triplets, zero-based. Values are complex128,
        or float64 when frequency == 0.
    """
    _check_inputs(mesh, frequency)
    absorption = _absorption_term(mesh, frequency)

    n_local = mesh.elements.shape[1]
    nnz = mesh.elements.shape[0] * n_local * n_local
    rows = np.empty(nnz, dtype=np.int64)
    cols = np.empty(nnz, dtype=np.int64)
    values = np.empty(nnz, dtype=absorption.dtype)

    bad = _build_element_system(
        np.ascontiguousarray(mesh.nodes),
        np.ascontiguousarray(mesh.elements),
        np.ascontiguousarray(mesh.kappa, dtype=np.float64),
        np.ascontiguousarray(absorption),
        rows, cols, values,
    )
    if bad >= 0:
        raise AssemblyFailure(f"Element {bad} is degenerate (zero volume)")

    b_rows, b_cols, b_values = _boundary_triplets(mesh, boundary_faces(mesh.elements))
    logger.debug("Assembled %d element and %d boundary entries", nnz, b_values.size)
    return (
        np.concatenate([rows, b_rows]),
        np.concatenate([cols, b_cols]),
        np.concatenate([values, b_values.astype(values.dtype)]),
    )


def assemble_system_matrix_gpu(
    mesh: SpectralMesh,
    frequency: float,
    device: str | torch.device = "cpu",
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """
    Assemble the system matrix with batched torch operations on `device`.

    Same triplets as `assemble_system_matrix`, returned as tensors resident
    on `device` so the iterative solve can run without a host round trip.
    """
    _check_inputs(mesh, frequency)
    device = torch.device(device)
    absorption = _absorption_term(mesh, frequency)
    dtype = torch.float64 if frequency == 0 else torch.complex128
    dim = mesh.dimension
    n_local = dim + 1

    nodes = torch.from_numpy(mesh.nodes).to(device=device, dtype=torch.float64)
    elements = torch.from_numpy(mesh.elements).to(device=device)
    kappa = torch.from_numpy(np.asarray(mesh.kappa, dtype=np.float64)).to(device)
    absorption_t = torch.from_numpy(np.ascontiguousarray(absorption)).to(device=device, dtype=dtype)

    verts = nodes[elements]                                        # (m, d+1, d)
    edges = (verts[:, 1:, :] - verts[:, :1, :]).transpose(1, 2)    # columns are edges
    vol = torch.linalg.det(edges).abs() / factorial(dim)
    if bool((vol <= 0).any()):
        bad = int(torch.nonzero(vol <= 0)[0])
        raise AssemblyFailure(f"Element {bad} is degenerate (zero volume)")
    inv = torch.linalg.inv(edges)                                  # rows are gradients
    grads = torch.cat([-inv.sum(dim=1, keepdim=True), inv], dim=1)  # (m, d+1, d)

    kappa_e = kappa[elements].mean(dim=1)
    absorption_e = absorption_t[elements].mean(dim=1)

    stiffness = (kappa_e * vol)[:, None, None] * (grads @ grads.transpose(1, 2))
    local_mass = (torch.ones(n_local, n_local, device=device, dtype=torch.float64)
                  + torch.eye(n_local, device=device, dtype=torch.float64)) / ((dim + 1) * (dim + 2))
    mass = (absorption_e * vol.to(dtype))[:, None, None] * local_mass.to(dtype)[None, :, :]
    element_values = (stiffness.to(dtype) + mass).reshape(-1)

    rows = elements.repeat_interleave(n_local, dim=1).reshape(-1)
    cols = elements.repeat(1, n_local).reshape(-1)

    b_rows, b_cols, b_values = _boundary_triplets(mesh, boundary_faces(mesh.elements))
    rows = torch.cat([rows, torch.from_numpy(b_rows).to(device)])
    cols = torch.cat([cols, torch.from_numpy(b_cols).to(device)])
    values = torch.cat([element_values, torch.from_numpy(b_values).to(device=device, dtype=dtype)])
    return rows, cols, values
