"""Tests for system matrix assembly on the CPU and with torch."""

import numpy as np
import pytest
import torch
from scipy.sparse import coo_matrix

from nirforward.assembly import (
    assemble_system_matrix,
    assemble_system_matrix_gpu,
    boundary_mismatch_factor,
)
from nirforward.errors import AssemblyFailure
from nirforward.geometry import boundary_faces, simplex_measures
from nirforward.optics import compose_optical_properties
from nirforward.types import OptodeSet, SpectralMesh

from conftest import make_slab_mesh


def snapshot(mesh, index=0):
    optical = compose_optical_properties(mesh, float(mesh.wv[index]))
    return mesh.at_wavelength(index, optical)


def dense(rows, cols, values, n):
    if isinstance(values, torch.Tensor):
        rows, cols, values = rows.cpu().numpy(), cols.cpu().numpy(), values.cpu().numpy()
    return coo_matrix((values, (rows, cols)), shape=(n, n)).toarray()


def test_mismatch_factor_matched_index():
    assert boundary_mismatch_factor(np.array([1.0]))[0] == pytest.approx(0.5)


def test_mismatch_factor_decreases_with_index():
    zeta = boundary_mismatch_factor(np.array([1.0, 1.33, 1.4]))
    assert zeta[0] > zeta[1] > zeta[2] > 0


def test_total_sum_is_absorption_plus_boundary():
    """At DC with n = 1, stiffness rows cancel and the rest integrates exactly."""
    mesh = make_slab_mesh(nx=6, ny=5, spacing=2.0, ri=1.0)
    snap = snapshot(mesh)
    mua = snap.mua[0]

    rows, cols, values = assemble_system_matrix(snap, 0.0)

    assert values.dtype == np.float64
    width, height = 10.0, 8.0
    expected = mua * width * height + 0.5 * 2.0 * (width + height)
    assert values.sum() == pytest.approx(expected, rel=1e-10)


def test_matrix_is_symmetric(slab_mesh):
    snap = snapshot(slab_mesh)
    A = dense(*assemble_system_matrix(snap, 100e6), slab_mesh.node_count)
    np.testing.assert_allclose(A, A.T, atol=1e-14)


def test_frequency_term_is_negative_imaginary(slab_mesh):
    snap = snapshot(slab_mesh)
    n = slab_mesh.node_count
    dc = dense(*assemble_system_matrix(snap, 0.0), n)
    fd = dense(*assemble_system_matrix(snap, 100e6), n)

    np.testing.assert_allclose(fd.real, dc, atol=1e-14)
    assert np.all(np.diag(fd).imag < 0)
    # imaginary part integrates omega * n / c over the domain
    omega = 2.0 * np.pi * 100e6
    area = 20.0 * 20.0
    assert fd.imag.sum() == pytest.approx(-omega * 1.33 / 3e11 * area, rel=1e-10)


def test_torch_assembly_matches_numba(slab_mesh):
    snap = snapshot(slab_mesh, 1)
    n = slab_mesh.node_count
    cpu = dense(*assemble_system_matrix(snap, 80e6), n)
    rows, cols, values = assemble_system_matrix_gpu(snap, 80e6, device="cpu")

    assert values.dtype == torch.complex128
    np.testing.assert_allclose(dense(rows, cols, values, n), cpu, rtol=1e-12, atol=1e-14)


def test_torch_assembly_is_real_at_dc(slab_mesh):
    _, _, values = assemble_system_matrix_gpu(snapshot(slab_mesh), 0.0, device="cpu")
    assert values.dtype == torch.float64


def test_three_dimensional_assembly():
    nodes = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 1.0, 1.0],
    ])
    elements = np.array([[0, 1, 2, 3], [1, 2, 3, 4]])
    snap = SpectralMesh(
        nodes=nodes,
        elements=elements,
        region=np.ones(5),
        wv=[690.0],
        link=[[1, 1, 1]],
        sources=OptodeSet([1], [[0.2, 0.2, 0.2]]),
        detectors=OptodeSet([1], [[0.6, 0.6, 0.6]]),
        conc=np.ones((5, 1)),
        extinction=[[0.01]],
        sa=1.0,
        sp=1.0,
        ri=1.0,
        mua=np.full(5, 0.01),
        kappa=np.full(5, 0.3),
    )
    rows, cols, values = assemble_system_matrix(snap, 0.0)
    t_rows, t_cols, t_values = assemble_system_matrix_gpu(snap, 0.0)
    np.testing.assert_allclose(dense(t_rows, t_cols, t_values, 5), dense(rows, cols, values, 5), atol=1e-14)

    volume = simplex_measures(nodes, elements).sum()
    surface = simplex_measures(nodes, boundary_faces(elements)).sum()
    assert values.sum() == pytest.approx(0.01 * volume + 0.5 * surface, rel=1e-10)


def test_degenerate_element_raises():
    mesh = make_slab_mesh(nx=3, ny=3, spacing=1.0)
    snap = snapshot(mesh)
    snap.nodes = snap.nodes.copy()
    # collapse the centre node onto a corner
    snap.nodes[4] = snap.nodes[0]
    with pytest.raises(AssemblyFailure, match="degenerate"):
        assemble_system_matrix(snap, 0.0)
    with pytest.raises(AssemblyFailure, match="degenerate"):
        assemble_system_matrix_gpu(snap, 0.0)


def test_missing_optical_properties(slab_mesh):
    with pytest.raises(AssemblyFailure, match="optical properties"):
        assemble_system_matrix(slab_mesh, 0.0)


def test_non_finite_optical_properties(slab_mesh):
    snap = snapshot(slab_mesh)
    snap.mua = snap.mua.copy()
    snap.mua[3] = np.nan
    with pytest.raises(AssemblyFailure, match="mua"):
        assemble_system_matrix(snap, 0.0)
