"""Central place for nirforward default settings."""

# Iterative solver limits
DEFAULT_MAX_ITERATIONS: int = 1000
DEFAULT_ABS_TOLERANCE: float = 1e-8
DEFAULT_REL_TOLERANCE: float = 1e-8
DEFAULT_DIVERGENCE_TOLERANCE: float = 1e8
DEFAULT_GPU_INDEX: int = -1  # -1 = device with the highest compute capability

# Forward run
DEFAULT_KEEP_FIELD: bool = True
DEFAULT_FAILURE_POLICY: str = "abort"
DEFAULT_MAX_WORKERS: int = 1

# Physics
SPEED_OF_LIGHT_MM_S: float = 3e11  # vacuum, mm/s
DEFAULT_REFRACTIVE_INDEX: float = 1.33
SCATTERING_REFERENCE_WAVELENGTH: float = 1000.0  # nm, mus = sa * (wv / 1000)^-sp

# Melanin absorption model (epidermis), mm^-1
MELANIN_MUA_AT_500NM: float = 51.9
MELANIN_EXPONENT: float = 3.5
BASELINE_SKIN_MUA_COEFF: float = 7.84e7 / 10.0
BASELINE_SKIN_MUA_EXPONENT: float = 3.255

# Mesh type expected by the spectral forward model
SPECTRAL_MESH_TYPE: str = "spec"

# Tolerance for locating optodes inside elements (barycentric coordinates)
BARYCENTRIC_TOLERANCE: float = 1e-9

# File formats
MESH_ARCHIVE_SUFFIX: str = ".nirmesh"
MESH_SCHEMA_VERSION: str = "1.0"
