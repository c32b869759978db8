from typing import Optional, Sequence

import numpy as np
import skimage.filters

from .tiles import Tile


def textured_image(shape: Sequence[int], seed: int = 0) -> np.ndarray:
    """Smooth random texture with enough structure for phase correlation."""
    rng = np.random.default_rng(seed)
    noise = rng.random(tuple(shape))
    return skimage.filters.gaussian(noise, sigma=2.0) * 1000.0


def grid_tiles(
    canvas: np.ndarray,
    n_rows: int,
    n_cols: int,
    tile_size: int,
    step: int,
    jitter: Optional[np.ndarray] = None,
    offset_error: Optional[np.ndarray] = None,
) -> tuple[list[Tile], np.ndarray]:
    """Cut a 2-D canvas into overlapping tiles on a grid.

    Args:
        canvas: The full (Y, X) image.
        jitter: Per-tile (x, y) integer displacement of the true tile origins.
        offset_error: Per-tile (x, y) error added to the reported offsets.

    Returns:
        The tiles (reported offsets include the error) and the true (x, y)
        origins of every tile.
    """
    n = n_rows * n_cols
    jitter = np.zeros((n, 2), dtype=int) if jitter is None else jitter
    offset_error = np.zeros((n, 2)) if offset_error is None else offset_error

    tiles = []
    true_origins = []
    for r in range(n_rows):
        for c in range(n_cols):
            i = r * n_cols + c
            x0 = c * step + int(jitter[i][0])
            y0 = r * step + int(jitter[i][1])
            raster = canvas[y0:y0 + tile_size, x0:x0 + tile_size].copy()
            assert raster.shape == (tile_size, tile_size), "canvas too small for the grid"
            true_origins.append((x0, y0))
            reported = np.array([x0, y0], dtype=np.float64) + offset_error[i]
            tiles.append(Tile.from_array(i, reported, raster))
    return tiles, np.array(true_origins, dtype=np.float64)


def blank_tiles(offsets: Sequence[Sequence[float]], size: Sequence[float]) -> list[Tile]:
    """Tiles with the given offsets and size backed by small zero rasters."""
    return [
        Tile.from_array(i, offset, np.zeros((4, 4), dtype=np.float32), size=size)
        for i, offset in enumerate(offsets)
    ]
