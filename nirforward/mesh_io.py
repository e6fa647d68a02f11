"""Mesh serialization - save/load spectral meshes as ZIP archives."""

from __future__ import annotations

import json
import logging
import zipfile
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any

import numpy as np

from nirforward import defaults
from nirforward.errors import MeshLoadError
from nirforward.results import ForwardResult
from nirforward.types import ConstantAbsorption, MelaninField, OptodeSet, SpectralMesh

logger = logging.getLogger(__name__)

_ARRAY_FIELDS = ("nodes", "elements", "region", "wv", "link", "conc", "extinction", "sa", "sp", "ri")


def _array_to_bytes(arr: np.ndarray) -> bytes:
    buffer = BytesIO()
    np.save(buffer, np.asarray(arr), allow_pickle=False)
    return buffer.getvalue()


def _bytes_to_array(data: bytes) -> np.ndarray:
    return np.load(BytesIO(data), allow_pickle=False)


def save_mesh(mesh: SpectralMesh, filepath: str | Path) -> Path:
    """Save a spectral mesh to a .nirmesh ZIP archive.

    Format:
        head.nirmesh (ZIP containing:)
        ├── metadata.json       # names, scalars, schema version
        ├── nodes.npy
        ├── elements.npy
        ├── ...
        ├── sources_num.npy / sources_coords.npy
        ├── detectors_num.npy / detectors_coords.npy
        └── melanin_fraction.npy (optional)

    Args:
        mesh: Mesh to save
        filepath: Output path (suffix forced to .nirmesh)

    Returns:
        The path actually written.
    """
    filepath = Path(filepath)
    if filepath.suffix != defaults.MESH_ARCHIVE_SUFFIX:
        filepath = filepath.with_suffix(defaults.MESH_ARCHIVE_SUFFIX)

    constant = None
    if mesh.constant_absorption is not None:
        constant = {
            'region': mesh.constant_absorption.region,
            'value': float(mesh.constant_absorption.value),
        }

    metadata = {
        'schema_version': defaults.MESH_SCHEMA_VERSION,
        'created_at': datetime.now().isoformat(),
        'name': mesh.name,
        'mesh_type': mesh.mesh_type,
        'chromophores': list(mesh.chromophores),
        'has_wv': mesh.wv is not None,
        'constant_absorption': constant,
        'has_melanin': mesh.melanin is not None,
    }

    with zipfile.ZipFile(filepath, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name in _ARRAY_FIELDS:
            value = getattr(mesh, name)
            if value is not None:
                zf.writestr(f'{name}.npy', _array_to_bytes(value))
        zf.writestr('sources_num.npy', _array_to_bytes(mesh.sources.num))
        zf.writestr('sources_coords.npy', _array_to_bytes(mesh.sources.coords))
        zf.writestr('detectors_num.npy', _array_to_bytes(mesh.detectors.num))
        zf.writestr('detectors_coords.npy', _array_to_bytes(mesh.detectors.coords))
        if mesh.melanin is not None:
            zf.writestr('melanin_fraction.npy', _array_to_bytes(mesh.melanin.fraction))
        zf.writestr('metadata.json', json.dumps(metadata, indent=2))

    logger.info("Saved mesh '%s' to %s", mesh.name, filepath)
    return filepath


def load_mesh(filepath: str | Path) -> SpectralMesh:
    """Load a spectral mesh from a .nirmesh ZIP archive.

    Raises:
        FileNotFoundError: If the file does not exist
        MeshLoadError: If the archive is corrupt or incomplete
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Mesh file not found: {filepath}")

    try:
        with zipfile.ZipFile(filepath, 'r') as zf:
            try:
                metadata = json.loads(zf.read('metadata.json'))
            except (KeyError, json.JSONDecodeError) as e:
                raise MeshLoadError(f"Corrupt or missing metadata.json: {e}")

            names = set(zf.namelist())

            def read(name: str) -> np.ndarray:
                try:
                    return _bytes_to_array(zf.read(f'{name}.npy'))
                except KeyError:
                    raise MeshLoadError(f"Missing array file: {name}.npy")
                except ValueError as e:
                    raise MeshLoadError(f"Corrupt array file {name}.npy: {e}")

            arrays: dict[str, Any] = {}
            for name in _ARRAY_FIELDS:
                if f'{name}.npy' in names:
                    arrays[name] = read(name)
            for required in ("nodes", "elements", "region", "link", "conc", "extinction", "sa", "sp"):
                if required not in arrays:
                    raise MeshLoadError(f"Missing array file: {required}.npy")

            constant = metadata.get('constant_absorption')
            melanin = None
            if metadata.get('has_melanin'):
                melanin = MelaninField(fraction=read('melanin_fraction'))

            sources = OptodeSet(read('sources_num'), read('sources_coords'))
            detectors = OptodeSet(read('detectors_num'), read('detectors_coords'))

            try:
                mesh = SpectralMesh(
                    nodes=arrays['nodes'],
                    elements=arrays['elements'],
                    region=arrays['region'],
                    wv=arrays.get('wv'),
                    link=arrays['link'],
                    sources=sources,
                    detectors=detectors,
                    conc=arrays['conc'],
                    extinction=arrays['extinction'],
                    sa=arrays['sa'],
                    sp=arrays['sp'],
                    ri=arrays.get('ri'),
                    chromophores=list(metadata.get('chromophores', [])),
                    mesh_type=metadata.get('mesh_type', defaults.SPECTRAL_MESH_TYPE),
                    name=metadata.get('name', filepath.stem),
                    constant_absorption=(
                        ConstantAbsorption(region=constant['region'], value=constant['value'])
                        if constant is not None else None
                    ),
                    melanin=melanin,
                )
                if mesh.wv is not None:
                    mesh.validate()
            except ValueError as e:
                raise MeshLoadError(f"Inconsistent mesh archive {filepath}: {e}") from e
    except zipfile.BadZipFile:
        raise MeshLoadError(f"Not a valid ZIP file: {filepath}")

    logger.debug("Loaded mesh '%s' (%d nodes, %d elements)", mesh.name, mesh.node_count, mesh.elements.shape[0])
    return mesh


def save_result(result: ForwardResult, filepath: str | Path) -> Path:
    """Write a forward result to a compressed .npz file."""
    filepath = Path(filepath)
    if filepath.suffix != '.npz':
        filepath = filepath.with_suffix('.npz')

    payload: dict[str, np.ndarray] = {
        'complex': result.complex,
        'amplitude': result.amplitude,
        'phase': result.phase,
        'link': result.link,
        'wv': result.wv,
        'status': np.array([s.value for s in result.status]),
    }
    if result.phi is not None:
        payload['phi'] = result.phi
    if result.info is not None:
        payload['info_iterations'] = result.info.iterations
        payload['info_tolerances'] = result.info.tolerances
        payload['info_is_converged'] = result.info.is_converged
        payload['info_status'] = result.info.status

    np.savez_compressed(filepath, **payload)
    logger.info("Saved forward result to %s", filepath)
    return filepath
