"""Source vector generation from the link table."""

import logging

import numpy as np

from nirforward.geometry import interpolation_matrix
from nirforward.types import SpectralMesh

logger = logging.getLogger(__name__)


def active_sources(link: np.ndarray) -> np.ndarray:
    """Sorted labels of sources enabled at one or more wavelengths."""
    link = np.atleast_2d(link)
    enabled_rows = np.any(link[:, 2:] != 0, axis=1)
    return np.unique(link[enabled_rows, 0].astype(np.int64))


def build_source_vector(mesh: SpectralMesh, frequency: float) -> np.ndarray:
    """
    Nodal source matrix with one column per active source.

    Each source is a unit point source spread onto the nodes of its
    containing element with barycentric weights. Columns follow
    `active_sources(mesh.link)`.

    Returns:
        (n_nodes, n_active) complex128 array, or float64 when frequency == 0.
    """
    labels = active_sources(mesh.link)
    dtype = np.float64 if frequency == 0 else np.complex128
    qvec = np.zeros((mesh.node_count, labels.size), dtype=dtype)
    if labels.size == 0:
        logger.warning("No source is enabled in the link table")
        return qvec

    rows = [mesh.sources.index_of(int(label)) for label in labels]
    weights = interpolation_matrix(mesh.nodes, mesh.elements, mesh.sources.coords[rows])
    qvec[:] = weights.T.toarray()
    return qvec
