"""Tests for mesh archives and result files."""

import io
import json
import zipfile

import numpy as np
import pytest

from nirforward import forward_spectral_fd
from nirforward.errors import InvalidArgument, MeshLoadError
from nirforward.mesh_io import load_mesh, save_mesh, save_result
from nirforward.types import ConstantAbsorption, MelaninField


def test_roundtrip(slab_mesh, tmp_path):
    slab_mesh.constant_absorption = ConstantAbsorption(region=3, value=0.02)
    fraction = np.zeros(slab_mesh.node_count)
    fraction[:4] = 0.05
    slab_mesh.melanin = MelaninField(fraction=fraction)

    path = save_mesh(slab_mesh, tmp_path / "slab.nirmesh")
    loaded = load_mesh(path)

    for name in ("nodes", "elements", "region", "wv", "link", "conc", "extinction", "sa", "sp", "ri"):
        np.testing.assert_array_equal(getattr(loaded, name), getattr(slab_mesh, name))
    np.testing.assert_array_equal(loaded.sources.coords, slab_mesh.sources.coords)
    np.testing.assert_array_equal(loaded.detectors.num, slab_mesh.detectors.num)
    np.testing.assert_array_equal(loaded.melanin.fraction, fraction)
    assert loaded.constant_absorption == ConstantAbsorption(region=3, value=0.02)
    assert loaded.chromophores == ["HbO", "Hb"]
    assert loaded.name == "slab"
    assert loaded.mesh_type == "spec"


def test_suffix_forced(slab_mesh, tmp_path):
    path = save_mesh(slab_mesh, tmp_path / "slab.zip")
    assert path.suffix == ".nirmesh"
    assert path.exists()


def test_archive_contents(slab_mesh, tmp_path):
    path = save_mesh(slab_mesh, tmp_path / "slab")
    with zipfile.ZipFile(path) as zf:
        names = set(zf.namelist())
        metadata = json.loads(zf.read("metadata.json"))
    assert {"metadata.json", "nodes.npy", "link.npy", "sources_coords.npy"} <= names
    assert "melanin_fraction.npy" not in names
    assert metadata["schema_version"] == "1.0"
    assert metadata["has_wv"] is True


def test_mesh_without_wavelengths(slab_mesh, tmp_path):
    slab_mesh.wv = None
    loaded = load_mesh(save_mesh(slab_mesh, tmp_path / "nowv"))
    assert loaded.wv is None
    with pytest.raises(InvalidArgument, match="'wv'"):
        forward_spectral_fd(loaded, 100e6, solver="direct")


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_mesh(tmp_path / "missing.nirmesh")


def test_not_a_zip(tmp_path):
    path = tmp_path / "broken.nirmesh"
    path.write_text("not a zip archive")
    with pytest.raises(MeshLoadError, match="ZIP"):
        load_mesh(path)


def test_missing_array(slab_mesh, tmp_path):
    path = save_mesh(slab_mesh, tmp_path / "slab")
    stripped = tmp_path / "stripped.nirmesh"
    with zipfile.ZipFile(path) as src, zipfile.ZipFile(stripped, "w") as dst:
        for name in src.namelist():
            if name != "elements.npy":
                dst.writestr(name, src.read(name))
    with pytest.raises(MeshLoadError, match="elements.npy"):
        load_mesh(stripped)


def _replace_member(path, target, name, array):
    with zipfile.ZipFile(path) as src, zipfile.ZipFile(target, "w") as dst:
        for member in src.namelist():
            if member != name:
                dst.writestr(member, src.read(member))
        buffer = io.BytesIO()
        np.save(buffer, array)
        dst.writestr(name, buffer.getvalue())
    return target


def test_wrong_length_array(slab_mesh, tmp_path):
    path = save_mesh(slab_mesh, tmp_path / "slab")
    broken = _replace_member(path, tmp_path / "short_sa.nirmesh", "sa.npy", np.ones(5))
    with pytest.raises(MeshLoadError, match="Inconsistent mesh archive"):
        load_mesh(broken)


def test_inconsistent_link_table(slab_mesh, tmp_path):
    path = save_mesh(slab_mesh, tmp_path / "slab")
    broken = _replace_member(path, tmp_path / "link.nirmesh", "link.npy", np.ones((2, 3)))
    with pytest.raises(MeshLoadError, match="Link table"):
        load_mesh(broken)


def test_missing_metadata(tmp_path):
    path = tmp_path / "empty.nirmesh"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("nodes.npy", b"")
    with pytest.raises(MeshLoadError, match="metadata"):
        load_mesh(path)


def test_save_result(ten_node_mesh, tmp_path):
    result = forward_spectral_fd(ten_node_mesh, 100e6, solver="cpu")
    path = save_result(result, tmp_path / "result")
    assert path.suffix == ".npz"

    with np.load(path) as data:
        np.testing.assert_array_equal(data["complex"], result.complex)
        np.testing.assert_array_equal(data["status"], ["solved", "disabled"])
        assert data["phi"].shape == (10, 1, 2)
        np.testing.assert_array_equal(data["info_status"], result.info.status)
