"""Pyramid building and tile archive export."""

from .metadata import (
    ArchiveStatus,
    ManifestError,
    PyramidManifest,
    check_archive_status,
)
from .pyramid import (
    Pyramid,
    PyramidBuilder,
    ResourceExhausted,
    build_pyramid,
)
from .archive import write_tile_archive
from .backends import (
    is_vips_available,
    VIPSBackend,
)

__all__ = [
    "ArchiveStatus",
    "ManifestError",
    "PyramidManifest",
    "check_archive_status",
    "Pyramid",
    "PyramidBuilder",
    "ResourceExhausted",
    "build_pyramid",
    "write_tile_archive",
    "is_vips_available",
    "VIPSBackend",
]
