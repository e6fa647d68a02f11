"""Reduce a fluence field to the values measured at source-detector pairs."""

import numpy as np

from nirforward.errors import InvalidArgument
from nirforward.geometry import interpolation_matrix
from nirforward.sources import active_sources
from nirforward.types import SpectralMesh


def extract_boundary_data(mesh: SpectralMesh, phi: np.ndarray, source_labels: np.ndarray | None = None) -> np.ndarray:
    """
    Fluence at each link-table pair of a single-wavelength mesh.

    Args:
        mesh: Snapshot whose link table is `[source, detector, enable]`
        phi: (n_nodes, n_sources) fluence, columns ordered as `source_labels`
        source_labels: Labels of the columns of `phi`. Defaults to the active
            sources of `mesh.link`.

    Returns:
        complex vector with one entry per link row; NaN where the pair is
        disabled at this wavelength.
    """
    link = np.atleast_2d(mesh.link)
    if link.shape[1] != 3:
        raise InvalidArgument(f"Expected a single-wavelength link table, got {link.shape[1]} columns")
    if source_labels is None:
        source_labels = active_sources(link)
    source_labels = np.asarray(source_labels, dtype=np.int64)

    data = np.full(link.shape[0], np.nan, dtype=np.complex128)
    enabled = np.flatnonzero(link[:, 2] != 0)
    if enabled.size == 0:
        return data

    column = {int(label): i for i, label in enumerate(source_labels)}
    det_rows = [mesh.detectors.index_of(int(label)) for label in link[enabled, 1]]
    sampler = interpolation_matrix(mesh.nodes, mesh.elements, mesh.detectors.coords[det_rows])
    at_detectors = sampler @ phi  # (n_enabled, n_sources)

    for k, row in enumerate(enabled):
        source = int(link[row, 0])
        if source not in column:
            raise InvalidArgument(f"Source {source} has no column in the fluence field")
        data[row] = at_detectors[k, column[source]]
    return data
