"""Test configuration for nirforward."""

import numpy as np
import pytest

from nirforward.solvers import register_all_solvers
from nirforward.types import OptodeSet, SpectralMesh

# Oxy- and deoxy-haemoglobin, mm^-1 per mM, at 690 and 830 nm
EXTINCTION = np.array([
    [0.0956, 0.4925],
    [0.2321, 0.1792],
])
WAVELENGTHS = np.array([690.0, 830.0])


@pytest.fixture(scope="session", autouse=True)
def register_solvers():
    """Ensure solver registry is populated for all tests."""
    register_all_solvers()


def make_slab_mesh(
    nx: int = 11,
    ny: int = 11,
    spacing: float = 2.0,
    sources=((1.0, 10.0),),
    detectors=((19.0, 10.0),),
    link=None,
    ri: float = 1.33,
) -> SpectralMesh:
    """Rectangular 2-D mesh of right triangles with two chromophores.

    Nodes in the left half carry region 1, the right half region 3.
    """
    xs = np.arange(nx) * spacing
    ys = np.arange(ny) * spacing
    gx, gy = np.meshgrid(xs, ys)
    nodes = np.column_stack([gx.ravel(), gy.ravel()])

    elements = []
    for j in range(ny - 1):
        for i in range(nx - 1):
            a = i + j * nx
            b = a + 1
            c = a + nx
            d = c + 1
            elements.append((a, b, d))
            elements.append((a, d, c))
    elements = np.array(elements, dtype=np.int64)

    region = np.where(nodes[:, 0] < xs.max() / 2.0, 1, 3)
    n = nodes.shape[0]
    conc = np.tile([0.02, 0.01], (n, 1))

    sources = np.atleast_2d(np.asarray(sources, dtype=float))
    detectors = np.atleast_2d(np.asarray(detectors, dtype=float))
    if link is None:
        link = [[s + 1, d + 1, 1, 1] for s in range(len(sources)) for d in range(len(detectors))]

    return SpectralMesh(
        nodes=nodes,
        elements=elements,
        region=region,
        wv=WAVELENGTHS.copy(),
        link=np.array(link),
        sources=OptodeSet(np.arange(1, len(sources) + 1), sources),
        detectors=OptodeSet(np.arange(1, len(detectors) + 1), detectors),
        conc=conc,
        extinction=EXTINCTION.copy(),
        sa=1.0,
        sp=1.0,
        ri=ri,
        chromophores=["HbO", "Hb"],
        name="slab",
    )


@pytest.fixture
def slab_mesh():
    return make_slab_mesh()


@pytest.fixture
def ten_node_mesh():
    """2 x 5 node strip, one source, one detector, second wavelength disabled."""
    return make_slab_mesh(
        nx=5, ny=2, spacing=10.0,
        sources=((5.0, 5.0),),
        detectors=((35.0, 5.0),),
        link=[[1, 1, 1, 0]],
    )


@pytest.fixture
def multi_detector_mesh():
    """One source and detectors at increasing distance along the slab."""
    return make_slab_mesh(
        nx=21, ny=11, spacing=2.0,
        sources=((2.0, 10.0),),
        detectors=((10.0, 10.0), (18.0, 10.0), (26.0, 10.0), (34.0, 10.0)),
    )
