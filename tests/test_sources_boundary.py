"""Tests for source vectors and boundary data extraction."""

import logging
from dataclasses import replace

import numpy as np
import pytest

from nirforward.boundary import extract_boundary_data
from nirforward.errors import InvalidArgument
from nirforward.sources import active_sources, build_source_vector

from conftest import make_slab_mesh


def test_active_sources_sorted_and_enabled_only():
    link = np.array([
        [3, 1, 1, 0],
        [1, 2, 0, 1],
        [2, 1, 0, 0],
        [3, 2, 0, 1],
    ])
    np.testing.assert_array_equal(active_sources(link), [1, 3])


def test_source_vector_columns():
    mesh = make_slab_mesh(sources=((1.0, 6.0), (3.0, 3.0)), link=[[2, 1, 1, 1], [1, 1, 0, 1]])
    qvec = build_source_vector(mesh, 100e6)

    assert qvec.shape == (mesh.node_count, 2)
    assert qvec.dtype == np.complex128
    np.testing.assert_allclose(qvec.sum(axis=0), 1.0)
    # column order follows the sorted labels: source 1 then source 2
    np.testing.assert_allclose(qvec[:, 0].real @ mesh.nodes, [1.0, 6.0])
    np.testing.assert_allclose(qvec[:, 1].real @ mesh.nodes, [3.0, 3.0])


def test_source_vector_real_at_dc(slab_mesh):
    qvec = build_source_vector(slab_mesh, 0.0)
    assert qvec.dtype == np.float64


def test_source_on_node_is_a_unit_vector(slab_mesh):
    slab_mesh.sources.coords = np.array([[4.0, 10.0]])
    qvec = build_source_vector(slab_mesh, 0.0)
    node = np.flatnonzero((slab_mesh.nodes == [4.0, 10.0]).all(axis=1))[0]
    assert qvec[node, 0] == pytest.approx(1.0)
    assert np.count_nonzero(np.abs(qvec[:, 0]) > 1e-12) == 1


def test_no_active_source_warns(slab_mesh, caplog):
    slab_mesh.link = np.array([[1, 1, 0, 0]])
    with caplog.at_level(logging.WARNING, logger="nirforward"):
        qvec = build_source_vector(slab_mesh, 100e6)
    assert qvec.shape == (slab_mesh.node_count, 0)
    assert "No source" in caplog.text


def test_undefined_source(slab_mesh):
    slab_mesh.link = np.array([[7, 1, 1, 1]])
    with pytest.raises(InvalidArgument, match="Optode 7"):
        build_source_vector(slab_mesh, 100e6)


def test_boundary_data_uses_source_columns():
    mesh = make_slab_mesh(
        sources=((1.0, 6.0), (1.0, 14.0)),
        detectors=((19.0, 6.0), (19.0, 14.0)),
        link=[[1, 1, 1, 1], [2, 2, 1, 1], [2, 1, 0, 1]],
    )
    snap = replace(mesh, link=mesh.single_wavelength_link(0), wv=mesh.wv[:1], extinction=mesh.extinction[:1])

    # column 0 holds source 1, column 1 source 2; each is constant so the sample is the column value
    phi = np.column_stack([np.full(mesh.node_count, 2.0), np.full(mesh.node_count, 5.0)]).astype(complex)
    data = extract_boundary_data(snap, phi, np.array([1, 2]))

    assert data[0] == pytest.approx(2.0)
    assert data[1] == pytest.approx(5.0)
    assert np.isnan(data[2])


def test_boundary_data_needs_single_wavelength(slab_mesh):
    phi = np.ones((slab_mesh.node_count, 1))
    with pytest.raises(InvalidArgument, match="single-wavelength"):
        extract_boundary_data(slab_mesh, phi)
