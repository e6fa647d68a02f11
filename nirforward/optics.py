"""
Optical property composition for spectral meshes.

Absorption comes from chromophore concentrations times their extinction
spectra, scattering from a power law in wavelength. Two optional layers are
applied on top of the spectral model: a constant-absorption region and a
melanin field.
"""

import logging

import numpy as np

from nirforward import defaults
from nirforward.errors import InvalidArgument
from nirforward.types import ConstantAbsorption, MelaninField, OpticalProperties, SpectralMesh

logger = logging.getLogger(__name__)


def diffusion_coefficient(mua: np.ndarray, mus: np.ndarray) -> np.ndarray:
    """kappa = 1 / (3 (mua + mus'))."""
    return 1.0 / (3.0 * (mua + mus))


def _extinction_at(mesh: SpectralMesh, wavelength: float) -> np.ndarray:
    """Extinction coefficients of every chromophore at `wavelength`.

    Exact table wavelengths are looked up directly; anything else is linearly
    interpolated across the mesh wavelength list.

    Raises:
        InvalidArgument: If `wavelength` lies outside the tabulated range.
    """
    wv = mesh.wv
    exact = np.flatnonzero(np.isclose(wv, wavelength, rtol=0.0, atol=1e-9))
    if exact.size:
        return mesh.extinction[exact[0]]
    if not wv.min() < wavelength < wv.max():
        raise InvalidArgument(
            f"Wavelength {wavelength} nm is outside the extinction table range "
            f"[{wv.min()}, {wv.max()}] nm"
        )
    order = np.argsort(wv)
    return np.array([
        np.interp(wavelength, wv[order], mesh.extinction[order, k])
        for k in range(mesh.extinction.shape[1])
    ])


def calc_mua_mus(mesh: SpectralMesh, wavelength: float) -> OpticalProperties:
    """Base spectral model: chromophore absorption and power-law scattering."""
    mua = mesh.conc @ _extinction_at(mesh, wavelength)
    mus = mesh.sa * (wavelength / defaults.SCATTERING_REFERENCE_WAVELENGTH) ** (-mesh.sp)
    return OpticalProperties(mua=mua, mus=mus, kappa=diffusion_coefficient(mua, mus))


def calc_mua_mel(wavelength: float, fraction: np.ndarray) -> np.ndarray:
    """Epidermal absorption for a melanin volume fraction (mm^-1).

    Mixes melanin absorption with the melanin-free skin baseline:
        mua = f * mua_mel(wv) + (1 - f) * mua_baseline(wv)
    """
    fraction = np.asarray(fraction, dtype=np.float64)
    mua_mel = defaults.MELANIN_MUA_AT_500NM * (wavelength / 500.0) ** (-defaults.MELANIN_EXPONENT)
    mua_base = defaults.BASELINE_SKIN_MUA_COEFF * wavelength ** (-defaults.BASELINE_SKIN_MUA_EXPONENT)
    return fraction * mua_mel + (1.0 - fraction) * mua_base


def apply_constant_absorption(
    mesh: SpectralMesh,
    optical: OpticalProperties,
    override: ConstantAbsorption,
) -> OpticalProperties:
    """Force absorption on every node of one region and refresh kappa."""
    if override.is_empty:
        return optical
    logger.info("Changing mua for region number: %d", override.region)
    mua = optical.mua.copy()
    mua[mesh.region == override.region] = override.value
    return OpticalProperties(mua=mua, mus=optical.mus, kappa=diffusion_coefficient(mua, optical.mus))


def apply_melanin(wavelength: float, optical: OpticalProperties, melanin: MelaninField) -> OpticalProperties:
    """Replace absorption at nodes carrying melanin.

    Only mua changes here; kappa keeps the value composed before this layer.
    """
    fraction = np.asarray(melanin.fraction, dtype=np.float64)
    nodes = np.flatnonzero(fraction)
    if nodes.size == 0:
        return optical
    mua = optical.mua.copy()
    mua[nodes] = calc_mua_mel(wavelength, fraction[nodes])
    return OpticalProperties(mua=mua, mus=optical.mus, kappa=optical.kappa)


def compose_optical_properties(mesh: SpectralMesh, wavelength: float) -> OpticalProperties:
    """
    Per-node mua, mus and kappa of `mesh` at `wavelength`.

    Layers, in order:
    1. spectral chromophore/scattering model
    2. constant-absorption region (when present and non-empty)
    3. melanin field (when present), overriding both layers above
    """
    optical = calc_mua_mus(mesh, wavelength)
    if isinstance(mesh.constant_absorption, ConstantAbsorption):
        optical = apply_constant_absorption(mesh, optical, mesh.constant_absorption)
    if isinstance(mesh.melanin, MelaninField):
        optical = apply_melanin(wavelength, optical, mesh.melanin)
    return optical
