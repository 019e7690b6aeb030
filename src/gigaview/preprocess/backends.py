"""libvips operations used to build tile pyramids.

Every pixel operation the builder performs goes through :class:`VIPSBackend`:
decoding, RGBA normalisation, alpha-correct Lanczos halving, edge-tile
padding and lossless PNG encoding.

Usage:
    from gigaview.preprocess.backends import VIPSBackend

    level = VIPSBackend.ensure_rgba(VIPSBackend.load_image(Path("scan.tif")))
    coarser = VIPSBackend.halve(level)
    data = VIPSBackend.encode_png(VIPSBackend.extract_tile(level, 0, 0, 128))
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import numpy as np

# gigaview/__init__.py has already imported pyvips with its warnings silenced
_HAS_VIPS = False
_vips_import_error: str | None = None
pyvips: Any = None

try:
    import pyvips
    _HAS_VIPS = True
except (ImportError, OSError) as e:
    _vips_import_error = str(e)

#: Padding colour for the uncovered part of edge tiles
TRANSPARENT: list[int] = [0, 0, 0, 0]


def is_vips_available() -> bool:
    """Whether pyvips imported and found libvips."""
    return _HAS_VIPS


def get_vips_import_error() -> str | None:
    """Why pyvips failed to import, or None if it is usable."""
    return _vips_import_error


def _require_vips() -> None:
    if not _HAS_VIPS:
        raise RuntimeError(f"pyvips is unavailable: {_vips_import_error}")


class VIPSBackend:
    """Static pyvips helpers for the pyramid builder.

    Images passed between these helpers are ``pyvips.Image`` objects; only
    :meth:`encode_png` and :meth:`to_numpy` leave libvips.
    """

    @staticmethod
    def from_numpy(arr: np.ndarray) -> "pyvips.Image":
        """Wrap a uint8 array of shape (H, W), (H, W, 3) or (H, W, 4)."""
        _require_vips()

        arr = np.ascontiguousarray(arr, dtype=np.uint8)
        height, width = arr.shape[:2]
        bands = 1 if arr.ndim == 2 else arr.shape[2]

        img = pyvips.Image.new_from_memory(arr.tobytes(), width, height, bands, "uchar")
        return img.copy(interpretation="srgb" if bands >= 3 else "b-w")

    @staticmethod
    def to_numpy(img: "pyvips.Image") -> np.ndarray:
        """Render an image to a (H, W, bands) uint8 array."""
        if img.format != "uchar":
            img = img.cast("uchar")
        return np.frombuffer(img.write_to_memory(), dtype=np.uint8).reshape(
            img.height, img.width, img.bands
        )

    @staticmethod
    def load_image(path: Path) -> "pyvips.Image":
        """Open any format libvips can read, with random access for tiling.

        Raises:
            pyvips.Error: If the file cannot be decoded
        """
        _require_vips()
        return pyvips.Image.new_from_file(str(path))

    @staticmethod
    def ensure_rgba(img: "pyvips.Image") -> "pyvips.Image":
        """Convert to 8-bit sRGB plus alpha.

        Edge tiles are padded with transparency, so every level carries an
        alpha band. Greyscale, CMYK and 16-bit sources are converted first.
        """
        if img.interpretation != "srgb":
            img = img.colourspace("srgb")
        if img.format != "uchar":
            img = img.cast("uchar")

        if not img.hasalpha():
            return img.addalpha()
        if img.bands > 4:
            return img.extract_band(0, n=4)
        return img

    @staticmethod
    def resize(img: "pyvips.Image", size: tuple[int, int]) -> "pyvips.Image":
        """Lanczos3 resample of an RGBA image to exactly ``size`` (width, height).

        Filtering runs on premultiplied colour so fully transparent pixels
        contribute nothing to their neighbours.
        """
        width, height = size
        out = (
            img.premultiply()
            .resize(width / img.width, vscale=height / img.height, kernel="lanczos3")
            .unpremultiply()
            .cast("uchar")
        )
        # libvips may round the output by a pixel
        if (out.width, out.height) != (width, height):
            out = out.crop(0, 0, min(out.width, width), min(out.height, height))
            out = out.embed(0, 0, width, height, extend="copy")
        return out.copy(interpretation="srgb")

    @staticmethod
    def halve(img: "pyvips.Image") -> "pyvips.Image | None":
        """Next coarser level: ``floor(w/2) x floor(h/2)``, rendered to memory.

        Returns None once either axis floors to zero.
        """
        width, height = img.width // 2, img.height // 2
        if width == 0 or height == 0:
            return None
        return VIPSBackend.resize(img, (width, height)).copy_memory()

    @staticmethod
    def extract_tile(
        img: "pyvips.Image", left: int, top: int, tile_size: int
    ) -> "pyvips.Image":
        """Crop a ``tile_size`` square at (left, top).

        Tiles overhanging the right or bottom edge keep their image pixels in
        the top-left corner and are transparent elsewhere.
        """
        width = min(tile_size, img.width - left)
        height = min(tile_size, img.height - top)
        tile = img.crop(left, top, width, height)
        if (width, height) == (tile_size, tile_size):
            return tile
        return tile.embed(
            0, 0, tile_size, tile_size, extend="background", background=TRANSPARENT
        )

    @staticmethod
    def encode_png(img: "pyvips.Image") -> bytes:
        return img.write_to_buffer(".png")

    @staticmethod
    def decode(data: bytes) -> "pyvips.Image":
        """Decode tile bytes."""
        _require_vips()
        return pyvips.Image.new_from_buffer(data, "")

    @staticmethod
    def save_png(img: "pyvips.Image", path: Path) -> None:
        img.write_to_file(str(path))


def get_backend() -> type[VIPSBackend]:
    """Return the pixel backend, failing loudly if libvips is missing.

    Raises:
        RuntimeError: If pyvips could not be imported
    """
    if not _HAS_VIPS:
        raise RuntimeError(
            f"gigaview needs pyvips and libvips: {_vips_import_error}\n"
            "Install them with `pip install pyvips` plus your platform's libvips "
            "package (Windows builds: https://github.com/libvips/build-win64-mxe/releases)"
        )
    return VIPSBackend


def set_vips_concurrency(num_threads: int) -> None:
    """Cap libvips' internal worker threads.

    Independent of the batch builder's process count.

    Raises:
        RuntimeError: If pyvips could not be imported
    """
    _require_vips()
    # cache_set_max counts operations, not bytes
    pyvips.cache_set_max(1000)
    os.environ["VIPS_CONCURRENCY"] = str(num_threads)
