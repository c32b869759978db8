"""Median based intensity normalization across a tile collection.

For every channel, the per-pixel median over all fields of view of all tiles
forms a reference image. Scaled by its own median, it estimates the uneven
illumination shared by the tiles, and every tile is divided by it in place.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

import numpy as np

from .errors import DimensionMismatch
from .parameters import StitchingParameters
from ._typing_utils import FloatArray, NumArray
from .tiles import Tile

logger = logging.getLogger(__name__)


def check_matching_dimensions(rasters: Sequence[NumArray], tiles: Sequence[Tile]) -> None:
    """Raise DimensionMismatch unless all rasters share one (C, Z, Y, X) shape."""
    expected = rasters[0].shape
    for tile, raster in zip(tiles, rasters):
        if raster.shape != expected:
            raise DimensionMismatch(
                f"{tile.title} has raster shape (C, Z, Y, X)={raster.shape}, "
                f"expected {expected} like {tiles[0].title}"
            )


def median_reference(planes: NumArray) -> Optional[FloatArray]:
    """Normalized reference image from an (N, Y, X) stack of planes.

    Returns None when the median of the per-pixel median image is zero.
    """
    median_image = np.median(planes, axis=0)
    global_median = float(np.median(median_image))
    if global_median == 0.0:
        return None
    return median_image / global_median


def apply_reference(plane: NumArray, reference: FloatArray) -> None:
    """Divide `plane` by `reference` in place.

    Pixels with a zero reference are left as they are. Integer planes get the
    quotient truncated toward zero and clipped to the dtype range.
    """
    corrected = np.divide(
        plane, reference, out=plane.astype(np.float64), where=reference != 0
    )
    if np.issubdtype(plane.dtype, np.integer):
        info = np.iinfo(plane.dtype)
        corrected = np.clip(np.trunc(corrected), info.min, info.max)
    plane[...] = corrected


def normalize_channel(rasters: Sequence[NumArray], channel: int) -> bool:
    """Normalize one channel of every raster. Returns False if it was skipped."""
    planes = np.concatenate([raster[channel] for raster in rasters], axis=0)
    reference = median_reference(planes)
    if reference is None:
        logger.warning(
            f"Median intensity of channel {channel} is zero, skipping its normalization"
        )
        return False

    for raster in rasters:
        for plane in raster[channel]:
            apply_reference(plane, reference)
    return True


def normalize_intensity(
    tiles: Sequence[Tile],
    params: StitchingParameters,
    num_workers: Optional[int] = None,
) -> None:
    """Normalize every channel of every tile against the per-channel median image.

    The tile rasters are mutated in place; copy them beforehand if the
    original data is needed. Channels are processed concurrently.

    Raises:
        TileLoadError: If a tile cannot be opened.
        DimensionMismatch: If the tiles do not share width, height and
            channel/slice counts. No pixel is modified in that case.
    """
    if not tiles:
        return

    rasters = [tile.open(False) for tile in tiles]
    check_matching_dimensions(rasters, tiles)

    num_channels, num_slices = rasters[0].shape[:2]
    workers = min(num_workers or params.num_workers, num_channels)
    logger.info(
        f"Normalizing intensity of {len(tiles)} tiles ({num_channels} channels, "
        f"{num_slices} planes per tile) on {workers} threads"
    )

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(normalize_channel, rasters, c) for c in range(num_channels)
        ]
        # result() re-raises worker exceptions
        skipped = [c for c, f in enumerate(futures) if not f.result()]

    if skipped:
        logger.warning(f"Channels left unnormalized: {skipped}")
