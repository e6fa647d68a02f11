"""Forward model errors."""


class ForwardModelError(Exception):
    """Base class for forward model errors."""
    pass


class InvalidArgument(ForwardModelError, ValueError):
    """Malformed argument or mesh missing required metadata."""
    pass


class MeshLoadError(InvalidArgument):
    """Mesh archive is missing, corrupt or inconsistent."""
    pass


class UnknownSolver(ForwardModelError, ValueError):
    """Solver identifier does not name a registered backend."""
    pass


class AssemblyFailure(ForwardModelError):
    """System matrix could not be assembled."""
    pass


class SolveFailure(ForwardModelError):
    """Linear solve failed (singular system, breakdown of the factorization)."""
    pass


class DeviceUnavailable(ForwardModelError, RuntimeError):
    """Requested GPU does not exist or no compatible device was found."""
    pass
