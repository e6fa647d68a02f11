"""Tests for simplex geometry and point location."""

import numpy as np
import pytest

from nirforward.errors import InvalidArgument
from nirforward.geometry import (
    barycentric,
    boundary_faces,
    boundary_nodes,
    interpolation_matrix,
    locate_points,
    simplex_measures,
)

from conftest import make_slab_mesh


def unit_square():
    nodes = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    elements = np.array([[0, 1, 3], [0, 3, 2]])
    return nodes, elements


def test_triangle_areas():
    nodes, elements = unit_square()
    np.testing.assert_allclose(simplex_measures(nodes, elements), [0.5, 0.5])


def test_edge_lengths_in_plane():
    nodes, _ = unit_square()
    edges = np.array([[0, 1], [0, 3]])
    np.testing.assert_allclose(simplex_measures(nodes, edges), [1.0, np.sqrt(2.0)])


def test_tetrahedron_volume():
    nodes = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    assert simplex_measures(nodes, np.array([[0, 1, 2, 3]]))[0] == pytest.approx(1.0 / 6.0)


def test_boundary_of_square():
    nodes, elements = unit_square()
    faces = boundary_faces(elements)
    assert faces.shape == (4, 2)
    # the shared diagonal is interior
    assert not any((face == [0, 3]).all() for face in faces)
    assert simplex_measures(nodes, faces).sum() == pytest.approx(4.0)


def test_boundary_nodes_of_grid():
    mesh = make_slab_mesh(nx=5, ny=4, spacing=1.0)
    mask = boundary_nodes(mesh.elements, mesh.node_count)
    interior = (mesh.nodes[:, 0] > 0) & (mesh.nodes[:, 0] < 4) & (mesh.nodes[:, 1] > 0) & (mesh.nodes[:, 1] < 3)
    np.testing.assert_array_equal(mask, ~interior)


def test_barycentric_reproduces_point():
    nodes, elements = unit_square()
    point = np.array([0.7, 0.2])
    lam = barycentric(nodes, elements, point)
    np.testing.assert_allclose(lam.sum(axis=1), 1.0)
    inside = lam[0]
    np.testing.assert_allclose(inside @ nodes[elements[0]], point)


def test_locate_inside_point():
    nodes, elements = unit_square()
    element, weights = locate_points(nodes, elements, [[0.25, 0.75]])
    assert element[0] == 1
    assert weights.min() >= 0.0
    np.testing.assert_allclose(weights[0] @ nodes[elements[1]], [0.25, 0.75])


def test_locate_outside_point_snaps():
    nodes, elements = unit_square()
    element, weights = locate_points(nodes, elements, [[1.05, 0.5]])
    assert weights.min() >= 0.0
    assert weights.sum() == pytest.approx(1.0)
    assert element[0] == 0


def test_degenerate_element_rejected():
    nodes = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0]])
    with pytest.raises(InvalidArgument, match="degenerate"):
        barycentric(nodes, np.array([[0, 1, 2]]), np.array([0.5, 0.0]))


def test_interpolation_matrix_is_exact_for_linear_fields():
    mesh = make_slab_mesh(nx=6, ny=6, spacing=1.5)
    field = 2.0 * mesh.nodes[:, 0] - 0.5 * mesh.nodes[:, 1] + 3.0
    points = np.array([[1.1, 2.3], [4.0, 0.7], [6.9, 6.9]])
    sampler = interpolation_matrix(mesh.nodes, mesh.elements, points)
    assert sampler.shape == (3, mesh.node_count)
    np.testing.assert_allclose(sampler @ field, 2.0 * points[:, 0] - 0.5 * points[:, 1] + 3.0)
    np.testing.assert_allclose(np.asarray(sampler.sum(axis=1)).ravel(), 1.0)
