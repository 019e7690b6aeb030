"""gigaview - Multi-resolution tile pyramid builder and viewer for very large images."""

from __future__ import annotations

import contextlib
import logging
import os
import sys

from gigaview.config import VIPS_BASE_PATH, VIPS_REQUIRED_DLLS

__version__ = "0.1.0"

_logger = logging.getLogger(__name__)


def _add_vips_dll_directory() -> None:
    """Make a side-by-side libvips install loadable on Windows."""
    if not VIPS_BASE_PATH.exists():
        return
    installs = sorted((d for d in VIPS_BASE_PATH.glob("vips-dev-*") if d.is_dir()), reverse=True)
    if not installs or not (installs[0] / "bin").exists():
        return

    vips_bin = installs[0] / "bin"
    os.add_dll_directory(str(vips_bin))

    import ctypes

    for dll in VIPS_REQUIRED_DLLS:
        path = vips_bin / dll
        if path.exists():
            try:
                ctypes.CDLL(str(path))
            except OSError as e:
                _logger.debug("Failed to pre-load %s: %s", dll, e)


@contextlib.contextmanager
def _c_stderr_silenced():
    """Redirect file descriptor 2, which libvips writes to directly."""
    try:
        fd = sys.stderr.fileno()
    except (AttributeError, OSError):
        # No real descriptor (IDLE, embedded interpreters)
        yield
        return

    saved = os.dup(fd)
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, fd)
        yield
    finally:
        os.dup2(saved, fd)
        os.close(saved)
        os.close(devnull)


def _import_vips_quietly() -> None:
    # Optional loaders (jxl, magick, poppler) warn on import; tiling needs none of them
    os.environ.setdefault("VIPS_WARNING", "0")
    if sys.platform == "win32":
        _add_vips_dll_directory()
    try:
        with _c_stderr_silenced():
            import pyvips  # noqa: F401
    except (ImportError, OSError) as e:
        _logger.debug("pyvips unavailable: %s", e)


# Must run before any other module imports pyvips
_import_vips_quietly()
