"""CLI entry point for offline tile pyramid building."""

from __future__ import annotations

import logging
import multiprocessing
import sys
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

import click
from tqdm import tqdm

from gigaview.config import (
    DEFAULT_PARALLEL_IMAGES,
    IMAGE_EXTENSIONS,
    LOG_LEVEL,
    TILE_SIZE,
    VIPS_CONCURRENCY,
)

logger = logging.getLogger(__name__)

from .backends import get_vips_import_error, is_vips_available, set_vips_concurrency
from .worker import process_single_image


def is_image_file(path: Path) -> bool:
    """Check if a file has a supported image extension."""
    return path.suffix.lower() in IMAGE_EXTENSIONS


def find_image_files(path: Path) -> list[Path]:
    """Source images at ``path``: the file itself, or a directory's direct children."""
    path = Path(path)
    if path.is_dir():
        return sorted(p for p in path.iterdir() if p.is_file() and is_image_file(p))
    if path.is_file() and is_image_file(path):
        return [path]
    return []


@dataclass
class BatchResult:
    """Outcome counts of one batch run."""

    processed: int = 0
    skipped: int = 0
    failures: list[tuple[Path, str]] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


def _check_prerequisites() -> None:
    """Exit with an error message unless pyvips imported."""
    if is_vips_available():
        return
    click.secho(
        f"Error: gigaview needs pyvips and libvips ({get_vips_import_error()}). "
        "Install libvips, then `pip install pyvips`.",
        fg="red",
        err=True,
    )
    sys.exit(1)


def _print_header(image_files: list[Path], output_dir: Path, force: bool) -> None:
    click.secho("gigaview tiling", fg="cyan", bold=True)
    click.secho("-" * 40, fg="cyan")
    click.echo(f"Images:    {len(image_files)}")
    click.echo(f"Output:    {output_dir}")
    click.echo(f"Tiles:     {TILE_SIZE}px PNG, Lanczos3 halving")
    if force:
        click.secho("Rebuilding existing archives (--force)", fg="yellow")
    click.echo()


def _process_images(
    image_files: list[Path],
    output_dir: Path,
    parallel: int,
    force: bool,
) -> BatchResult:
    """Tile every image on a process pool, reporting progress with tqdm.

    Args:
        image_files: Source images
        output_dir: Directory receiving the archives
        parallel: Worker process count
        force: Rebuild archives that are already complete
    """
    outcome = BatchResult()

    # libvips holds threads and locks that a forked child would inherit mid-use
    context = multiprocessing.get_context("spawn")
    with ProcessPoolExecutor(max_workers=parallel, mp_context=context) as executor:
        futures = {
            executor.submit(process_single_image, image, output_dir, force): image
            for image in image_files
        }
        with tqdm(total=len(futures), desc="Tiling images", unit="image") as pbar:
            for future in as_completed(futures):
                image = futures[future]
                pbar.update(1)
                try:
                    archive, error, was_skipped = future.result()
                except Exception as e:
                    # The worker process died; its archive was never replaced
                    logger.error("Worker crashed on %s: %s", image, e)
                    error = f"worker crashed: {e}"
                    archive, was_skipped = None, False

                if error is not None:
                    outcome.failures.append((image, error))
                    tqdm.write(f"Error processing {image.name}: {error}", file=sys.stderr)
                elif was_skipped:
                    outcome.skipped += 1
                else:
                    outcome.processed += 1
                    logger.debug("Wrote %s", archive)

    return outcome


def _print_summary(outcome: BatchResult, force: bool) -> None:
    """Print the totals; exit 1 if any image failed."""
    counts = [
        (outcome.processed, "processed", "green"),
        (outcome.skipped, "skipped", "cyan"),
        (outcome.failed, "failed", "red"),
    ]
    parts = [click.style(f"{n} {label}", fg=color) for n, label, color in counts if n]

    click.echo()
    click.secho("-" * 40, fg="cyan")
    click.echo(click.style("Done: ", bold=True) + (", ".join(parts) or "nothing to do"))
    if outcome.skipped and not force:
        click.secho("  (--force rebuilds skipped images)", fg="cyan")

    if outcome.failures:
        click.secho("\nFailed images:", fg="red")
        for image, error in outcome.failures:
            click.echo(f"  {image.name}: {error}")
        sys.exit(1)


@click.command()
@click.argument("input_path", type=click.Path(exists=True))
@click.option(
    "-o",
    "--output",
    type=click.Path(),
    default=".",
    help="Output directory for <name>_tiles.zip archives",
)
@click.option(
    "--parallel",
    "-p",
    type=click.IntRange(min=1),
    default=DEFAULT_PARALLEL_IMAGES,
    help=f"Process multiple images in parallel (default: {DEFAULT_PARALLEL_IMAGES})",
)
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force rebuild even if a complete archive already exists",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable debug logging",
)
def main(
    input_path: str,
    output: str,
    parallel: int,
    force: bool,
    verbose: bool,
) -> None:
    """Tile large images into zoomable pyramid archives.

    INPUT_PATH can be a single image or a directory containing images.
    Each image produces <name>_tiles.zip holding image_data.js and
    tiles/<level>/<row>_<col>.png, readable by the gigaview viewer.

    Use this for images too large for the viewer's in-process builder.

    Examples:

        # Tile a single image
        python -m gigaview.preprocess photo.tif -o ./output/

        # Tile every image in a directory, four at a time
        python -m gigaview.preprocess ./scans/ -o ./output/ -p 4
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(input_path)
    output_dir = Path(output)

    image_files = find_image_files(input_path)
    if not image_files:
        click.echo(f"No images found in {input_path}", err=True)
        sys.exit(1)

    _check_prerequisites()
    _print_header(image_files, output_dir, force)

    output_dir.mkdir(parents=True, exist_ok=True)
    set_vips_concurrency(int(VIPS_CONCURRENCY))

    outcome = _process_images(image_files, output_dir, parallel, force)
    _print_summary(outcome, force)


if __name__ == "__main__":
    main()
