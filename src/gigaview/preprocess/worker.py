"""Per-image job run in the batch builder's worker processes.

Kept out of __main__.py so spawned processes can import it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .archive import write_tile_archive
from .metadata import ArchiveStatus, archive_path_for_image, check_archive_status
from .pyramid import PyramidBuilder, load_source

logger = logging.getLogger(__name__)

#: Offline builds are not bound by the interactive size limit
_NO_PIXEL_LIMIT = 2 ** 62


def process_single_image(
    image_path: Path,
    output_dir: Path,
    force: bool = False,
) -> tuple[Path | None, str | None, bool]:
    """Build and archive the tile pyramid of a single image.

    Args:
        image_path: Path to the source image
        output_dir: Output directory for the ``<stem>_tiles.zip`` archive
        force: Rebuild even if a complete archive exists

    Returns:
        (archive_path, error, skipped). archive_path is None unless an
        archive was written; error is None unless the build failed.
    """
    image_path = Path(image_path)
    archive_path = archive_path_for_image(image_path, output_dir)

    status = check_archive_status(archive_path)
    if status == ArchiveStatus.COMPLETE and not force:
        logger.info("Skipping %s: already tiled (use --force to rebuild)", image_path.name)
        return None, None, True
    if status == ArchiveStatus.INCOMPLETE:
        logger.info("Found incomplete archive for %s, rebuilding...", image_path.name)
    elif status == ArchiveStatus.CORRUPTED:
        logger.warning("Found corrupted archive for %s, rebuilding...", image_path.name)

    logger.info("Processing %s", image_path.name)
    try:
        builder = PyramidBuilder(max_pixels=_NO_PIXEL_LIMIT)
        pyramid = builder.build(load_source(image_path))
        return write_tile_archive(pyramid, archive_path), None, False
    except Exception as e:
        logger.error("Failed to process %s: %s", image_path.name, e)
        return None, str(e), False
