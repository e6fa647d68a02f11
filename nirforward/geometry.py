"""
Geometry helpers for linear simplex meshes (triangles in 2-D, tetrahedra in 3-D).
"""

from itertools import combinations
from math import factorial

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from nirforward import defaults
from nirforward.errors import InvalidArgument


def simplex_measures(nodes: np.ndarray, simplices: np.ndarray) -> np.ndarray:
    """Length/area/volume of each simplex, in any embedding dimension.

    Uses the Gram determinant so boundary faces (a (d-1)-simplex embedded
    in d dimensions) and full elements share one formula.
    """
    verts = nodes[simplices]                   # (m, q, d)
    edges = verts[:, 1:, :] - verts[:, :1, :]  # (m, q-1, d)
    gram = edges @ np.swapaxes(edges, 1, 2)
    order = simplices.shape[1] - 1
    det = np.clip(np.linalg.det(gram), 0.0, None)
    return np.sqrt(det) / factorial(order)


def boundary_faces(elements: np.ndarray) -> np.ndarray:
    """Faces that belong to exactly one element, as sorted node tuples."""
    n_vertices = elements.shape[1]
    faces = np.concatenate(
        [elements[:, list(idx)] for idx in combinations(range(n_vertices), n_vertices - 1)],
        axis=0,
    )
    faces = np.sort(faces, axis=1)
    unique, counts = np.unique(faces, axis=0, return_counts=True)
    return unique[counts == 1]


def boundary_nodes(elements: np.ndarray, node_count: int) -> np.ndarray:
    """Boolean mask of nodes on the outer surface."""
    mask = np.zeros(node_count, dtype=bool)
    mask[boundary_faces(elements).ravel()] = True
    return mask


def _inverse_edge_matrices(nodes: np.ndarray, elements: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Origin vertex and inverse of the edge matrix of every element."""
    verts = nodes[elements]
    origin = verts[:, 0, :]
    edges = np.swapaxes(verts[:, 1:, :] - origin[:, None, :], 1, 2)  # columns are edges
    try:
        inverse = np.linalg.inv(edges)
    except np.linalg.LinAlgError as e:
        raise InvalidArgument(f"Mesh contains degenerate elements: {e}") from e
    return origin, inverse


def barycentric(nodes: np.ndarray, elements: np.ndarray, point: np.ndarray) -> np.ndarray:
    """Barycentric coordinates of `point` with respect to every element, (m, d+1)."""
    origin, inverse = _inverse_edge_matrices(nodes, elements)
    tail = np.einsum('mij,mj->mi', inverse, point[None, :] - origin)
    return np.concatenate([1.0 - tail.sum(axis=1, keepdims=True), tail], axis=1)


def locate_points(
    nodes: np.ndarray,
    elements: np.ndarray,
    points: np.ndarray,
    tol: float = defaults.BARYCENTRIC_TOLERANCE,
) -> tuple[np.ndarray, np.ndarray]:
    """Find the element containing each point and its interpolation weights.

    Points that fall outside the mesh (optodes placed slightly off the
    surface) snap to the closest element with negative weights clipped.

    Returns:
        (element_index, weights) with shapes (k,) and (k, d+1)
    """
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    element_index = np.empty(points.shape[0], dtype=np.int64)
    weights = np.empty((points.shape[0], elements.shape[1]), dtype=np.float64)

    for k, point in enumerate(points):
        lam = barycentric(nodes, elements, point)
        worst = lam.min(axis=1)
        best = int(np.argmax(worst))
        w = lam[best]
        if worst[best] < -tol:
            w = np.clip(w, 0.0, None)
            w = w / w.sum()
        element_index[k] = best
        weights[k] = w

    return element_index, weights


def interpolation_matrix(nodes: np.ndarray, elements: np.ndarray, points: np.ndarray) -> csr_matrix:
    """Sparse (k, n) matrix mapping nodal values to values at `points`."""
    element_index, weights = locate_points(nodes, elements, points)
    k = weights.shape[0]
    rows = np.repeat(np.arange(k), elements.shape[1])
    cols = elements[element_index].ravel()
    return coo_matrix((weights.ravel(), (rows, cols)), shape=(k, nodes.shape[0])).tocsr()
