"""Core data types for nirforward - mesh and optode containers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

import numpy as np

from nirforward import defaults
from nirforward.errors import InvalidArgument


@dataclass(frozen=True)
class OpticalProperties:
    """Per-node optical properties at one wavelength (mm^-1, mm)."""
    mua: np.ndarray
    mus: np.ndarray
    kappa: np.ndarray


@dataclass
class OptodeSet:
    """Labelled source or detector positions.

    Attributes:
        num: Integer labels referenced by the first two link-table columns
        coords: (k, d) positions in mesh coordinates (mm)
    """
    num: np.ndarray
    coords: np.ndarray

    def __post_init__(self) -> None:
        self.num = np.asarray(self.num, dtype=np.int64).reshape(-1)
        self.coords = np.atleast_2d(np.asarray(self.coords, dtype=np.float64))

    def __len__(self) -> int:
        return int(self.num.size)

    def index_of(self, label: int) -> int:
        """Row of `coords` holding the optode labelled `label`."""
        hits = np.flatnonzero(self.num == label)
        if hits.size == 0:
            raise InvalidArgument(f"Optode {label} is referenced by the link table but not defined")
        return int(hits[0])


@dataclass(frozen=True)
class ConstantAbsorption:
    """Wavelength-independent absorption forced onto one region.

    A record with `region=None` is present but empty and is ignored.
    """
    region: int | None
    value: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.region is None


@dataclass(frozen=True)
class MelaninField:
    """Per-node melanin volume fraction; zero means no melanin at that node."""
    fraction: np.ndarray


@dataclass
class SpectralMesh:
    """Spectral finite-element mesh.

    Optical properties are derived from chromophore concentrations and a
    power-law scattering model instead of being stored per node. Snapshots
    made by `at_wavelength` carry a single-wavelength link table and the
    composed `mua`/`mus`/`kappa`; the spectral mesh itself is never mutated
    by a forward run.
    """
    nodes: np.ndarray
    elements: np.ndarray
    region: np.ndarray
    wv: np.ndarray | None
    link: np.ndarray
    sources: OptodeSet
    detectors: OptodeSet
    conc: np.ndarray
    extinction: np.ndarray
    sa: np.ndarray
    sp: np.ndarray
    ri: np.ndarray | None = None
    chromophores: list[str] = field(default_factory=list)
    mesh_type: str = defaults.SPECTRAL_MESH_TYPE
    name: str = ""
    constant_absorption: ConstantAbsorption | None = None
    melanin: MelaninField | None = None

    # Populated on per-wavelength snapshots only
    mua: np.ndarray | None = None
    mus: np.ndarray | None = None
    kappa: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.nodes = np.asarray(self.nodes, dtype=np.float64)
        self.elements = np.asarray(self.elements, dtype=np.int64)
        self.region = np.asarray(self.region, dtype=np.int64).reshape(-1)
        if self.wv is not None:
            self.wv = np.asarray(self.wv, dtype=np.float64).reshape(-1)
        self.link = np.atleast_2d(np.asarray(self.link))
        self.conc = np.atleast_2d(np.asarray(self.conc, dtype=np.float64))
        self.extinction = np.atleast_2d(np.asarray(self.extinction, dtype=np.float64))
        self.sa = np.broadcast_to(np.asarray(self.sa, dtype=np.float64), (self.node_count,)).copy()
        self.sp = np.broadcast_to(np.asarray(self.sp, dtype=np.float64), (self.node_count,)).copy()
        if self.ri is None:
            self.ri = np.full(self.node_count, defaults.DEFAULT_REFRACTIVE_INDEX)
        else:
            self.ri = np.broadcast_to(np.asarray(self.ri, dtype=np.float64), (self.node_count,)).copy()

    @property
    def node_count(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.nodes.shape[1])

    @property
    def wavelength_count(self) -> int:
        return 0 if self.wv is None else int(self.wv.size)

    @property
    def link_row_count(self) -> int:
        return int(self.link.shape[0])

    def enabled_wavelengths(self) -> np.ndarray:
        """Boolean mask of wavelengths enabled for at least one link row."""
        return np.any(self.link[:, 2:] != 0, axis=0)

    def single_wavelength_link(self, index: int) -> np.ndarray:
        """Link table view `[source, detector, enable]` for one wavelength."""
        return self.link[:, [0, 1, index + 2]].copy()

    def at_wavelength(self, index: int, optical: OpticalProperties) -> SpectralMesh:
        """Snapshot of this mesh restricted to one wavelength.

        The returned mesh shares geometry arrays with the original (they are
        only read) and owns its single-wavelength link and optical properties.
        """
        return replace(
            self,
            wv=np.array([self.wv[index]]),
            link=self.single_wavelength_link(index),
            extinction=self.extinction[index:index + 1].copy(),
            mua=optical.mua,
            mus=optical.mus,
            kappa=optical.kappa,
        )

    def validate(self) -> None:
        """Check array shapes against each other.

        Raises:
            InvalidArgument: On any inconsistency.
        """
        n = self.node_count
        if self.nodes.ndim != 2 or self.dimension not in (2, 3):
            raise InvalidArgument(f"Mesh nodes must be (n, 2) or (n, 3), got {self.nodes.shape}")
        if self.elements.ndim != 2 or self.elements.shape[1] != self.dimension + 1:
            raise InvalidArgument(
                f"Elements must be linear simplices with {self.dimension + 1} nodes, got {self.elements.shape}"
            )
        if self.elements.size and (self.elements.min() < 0 or self.elements.max() >= n):
            raise InvalidArgument("Element node index out of range")
        if self.region.shape != (n,):
            raise InvalidArgument(f"Region labels must have {n} entries, got {self.region.shape}")
        if self.wv is None:
            raise InvalidArgument("The mesh is missing the 'wv' field specifying wavelengths")
        n_wv = self.wavelength_count
        if self.link.ndim != 2 or self.link.shape[1] != n_wv + 2:
            raise InvalidArgument(
                f"Link table must have {n_wv + 2} columns (source, detector, one per wavelength), "
                f"got {self.link.shape}"
            )
        if self.conc.shape[0] != n:
            raise InvalidArgument(f"Concentrations must have {n} rows, got {self.conc.shape}")
        if self.extinction.shape != (n_wv, self.conc.shape[1]):
            raise InvalidArgument(
                f"Extinction table must be ({n_wv}, {self.conc.shape[1]}), got {self.extinction.shape}"
            )
        if self.sources.coords.shape[1] != self.dimension or self.detectors.coords.shape[1] != self.dimension:
            raise InvalidArgument("Optode coordinates must match the mesh dimension")
        if self.melanin is not None and np.shape(self.melanin.fraction) != (n,):
            raise InvalidArgument(f"Melanin fraction must have {n} entries")
