"""
nirforward - spectral frequency-domain forward model for diffuse optical tomography.

Example:
    from nirforward import forward_spectral_fd, load_mesh

    mesh = load_mesh("head.nirmesh")
    result = forward_spectral_fd(mesh, 100e6, solver="direct")
    result.amplitude, result.phase
"""

from .config import FailurePolicy, ForwardConfig, SolverOptions, default_options, resolve_config
from .errors import (
    AssemblyFailure,
    DeviceUnavailable,
    ForwardModelError,
    InvalidArgument,
    MeshLoadError,
    SolveFailure,
    UnknownSolver,
)
from .forward import forward_spectral_fd, run_forward
from .logging_config import setup_logging
from .mesh_io import load_mesh, save_mesh, save_result
from .optics import compose_optical_properties
from .results import ConvergenceInfo, ForwardResult, WavelengthStatus
from .solvers import SolverKind, default_solver, resolve_solver
from .types import ConstantAbsorption, MelaninField, OpticalProperties, OptodeSet, SpectralMesh

__version__ = "0.1.0"

__all__ = [
    'AssemblyFailure',
    'ConstantAbsorption',
    'ConvergenceInfo',
    'DeviceUnavailable',
    'FailurePolicy',
    'ForwardConfig',
    'ForwardModelError',
    'ForwardResult',
    'InvalidArgument',
    'MelaninField',
    'MeshLoadError',
    'OpticalProperties',
    'OptodeSet',
    'SolveFailure',
    'SolverKind',
    'SolverOptions',
    'SpectralMesh',
    'UnknownSolver',
    'WavelengthStatus',
    'compose_optical_properties',
    'default_options',
    'default_solver',
    'forward_spectral_fd',
    'load_mesh',
    'resolve_config',
    'resolve_solver',
    'run_forward',
    'save_mesh',
    'save_result',
    'setup_logging',
]
