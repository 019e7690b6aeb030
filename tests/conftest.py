"""Test fixtures for gigaview tests."""

from __future__ import annotations

import os
import tempfile
import time
import zipfile
from pathlib import Path
from typing import Callable, Generator

# Must be set before the first QApplication is created
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import numpy as np
import pytest
from PySide6.QtWidgets import QApplication

from gigaview.preprocess.archive import write_tile_archive
from gigaview.preprocess.backends import VIPSBackend
from gigaview.preprocess.metadata import MANIFEST_NAME, tile_path
from gigaview.preprocess.pyramid import Pyramid, PyramidBuilder


@pytest.fixture(scope="session")
def qapp():
    """Create a Qt application for testing (shared across all test files)."""
    app = QApplication.instance()
    if app is None:
        app = QApplication([])
    yield app


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def wait_until(qapp) -> Callable[..., bool]:
    """Pump the Qt event loop until a condition holds or a deadline passes."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            qapp.processEvents()
            if predicate():
                return True
            time.sleep(0.005)
        qapp.processEvents()
        return predicate()

    return _wait


def _rgba_gradient(width: int, height: int) -> np.ndarray:
    """Opaque RGBA gradient, red along x and green along y."""
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[..., 0] = (np.arange(width) * 255 // max(width - 1, 1))[np.newaxis, :]
    img[..., 1] = (np.arange(height) * 255 // max(height - 1, 1))[:, np.newaxis]
    img[..., 2] = 128
    img[..., 3] = 255
    return img


@pytest.fixture
def make_rgba() -> Callable[[int, int], np.ndarray]:
    """Factory for opaque RGBA gradient arrays of any size."""
    return _rgba_gradient


@pytest.fixture
def sample_rgba_array() -> np.ndarray:
    """300x200 opaque RGBA source: 3 levels, a 3x2 finest grid with edge tiles."""
    return _rgba_gradient(300, 200)


@pytest.fixture
def sample_image(sample_rgba_array: np.ndarray):
    """The 300x200 sample as a pyvips image."""
    return VIPSBackend.from_numpy(sample_rgba_array)


@pytest.fixture
def sample_image_file(temp_dir: Path, sample_image) -> Path:
    """The 300x200 sample saved as a PNG file."""
    path = temp_dir / "sample.png"
    VIPSBackend.save_png(sample_image, path)
    return path


@pytest.fixture
def built_pyramid(sample_image) -> Pyramid:
    """Pyramid of the 300x200 sample."""
    return PyramidBuilder().build(sample_image)


@pytest.fixture
def tile_archive(temp_dir: Path, built_pyramid: Pyramid) -> Path:
    """The sample pyramid written as a tile archive."""
    return write_tile_archive(built_pyramid, temp_dir / "sample_tiles.zip")


@pytest.fixture
def damaged_archive(temp_dir: Path, built_pyramid: Pyramid) -> Path:
    """Complete sample archive, stored uncompressed, with one manifest byte flipped.

    The zip directory stays valid, so the damage only shows up as a CRC
    mismatch when the manifest is read.
    """
    path = temp_dir / "damaged_tiles.zip"
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as archive:
        archive.writestr(MANIFEST_NAME, built_pyramid.manifest.to_text())
        for coord, data in built_pyramid.tiles.items():
            archive.writestr(tile_path(*coord), data)

    data = bytearray(path.read_bytes())
    index = data.index(b'"numLevels"')
    data[index + 1] ^= 0x20
    path.write_bytes(bytes(data))
    return path
